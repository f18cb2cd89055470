from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Protocol

from .errors import TransientProviderError
from .redaction import redact

if TYPE_CHECKING:
    from .config import AssistMemConfig

logger = logging.getLogger(__name__)

PREVIOUS_SUMMARY_PREFIX = "Previous summary: "
DEFAULT_OPENAI_SUMMARY_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_SUMMARY_MODEL = "claude-3-5-haiku-latest"
_OMITTED_MARKER_RESERVE = 64

ChatMessage = Mapping[str, str]

SUMMARY_SYSTEM_PROMPT = (
    "You maintain the long-term memory of a personal assistant. "
    "Summarize the conversation below so the assistant can continue it later. "
    "Keep names, decisions, commitments, preferences and open questions. "
    "If the first message starts with 'Previous summary:', fold that summary "
    "into your answer instead of repeating it verbatim. "
    "Answer with plain prose, no preamble."
)


class Summarizer(Protocol):
    async def summarize(self, messages: Sequence[ChatMessage]) -> str: ...


def previous_summary_message(summary: str) -> dict[str, str]:
    return {"role": "system", "content": f"{PREVIOUS_SUMMARY_PREFIX}{summary}"}


def render_transcript(messages: Sequence[ChatMessage], max_chars: int = 24000) -> str:
    """Render messages as ``role: content`` lines, redacted and bounded.

    Over ``max_chars`` the oldest messages are dropped first. A leading
    previous-summary message is always kept, clipped to half the budget.
    """

    lines = [redact(f"{m.get('role', 'user')}: {m.get('content', '')}") for m in messages]
    transcript = "\n".join(lines)
    if len(transcript) <= max_chars:
        return transcript

    head: list[str] = []
    if messages and (messages[0].get("content") or "").startswith(PREVIOUS_SUMMARY_PREFIX):
        head.append(lines.pop(0)[: max_chars // 2])
    budget = max_chars - sum(len(line) + 1 for line in head) - _OMITTED_MARKER_RESERVE
    tail: list[str] = []
    for line in reversed(lines):
        if len(line) + 1 > budget:
            break
        tail.append(line)
        budget -= len(line) + 1
    tail.reverse()
    if not tail and lines:
        tail.append(lines[-1][-max(budget, 1) :])
    omitted = len(lines) - len(tail)
    return "\n".join([*head, f"[{omitted} earlier message(s) omitted]", *tail])


def basic_summary(messages: Sequence[ChatMessage]) -> str:
    """Cheap heuristic summary used when no summarizer is configured."""

    user_messages = [m for m in messages if m.get("role") == "user"]
    topics: list[str] = []
    for msg in user_messages[-20:]:
        topic = (msg.get("content") or "")[:100].replace("\n", " ")
        if topic not in topics:
            topics.append(topic)
    topic_lines = "\n".join(f"- {topic}..." for topic in topics[:10])
    return f"Previous conversation ({len(messages)} messages) covered:\n{topic_lines}"


class LLMSummarizer:
    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int = 600,
    ) -> None:
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        if provider == "anthropic":
            try:
                import anthropic
            except Exception as exc:  # pragma: no cover
                raise RuntimeError("anthropic package is required for anthropic summaries") from exc
            self.client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url)
        else:
            try:
                from openai import AsyncOpenAI
            except Exception as exc:  # pragma: no cover
                raise RuntimeError("openai package is required for model summaries") from exc
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def summarize(self, messages: Sequence[ChatMessage]) -> str:
        transcript = render_transcript(messages)
        try:
            if self.provider == "anthropic":
                resp = await self.client.messages.create(  # type: ignore[union-attr]
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=SUMMARY_SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": transcript}],
                    temperature=0,
                )
                text = "".join(
                    getattr(block, "text", "") for block in resp.content if block is not None
                )
            else:
                resp = await self.client.chat.completions.create(  # type: ignore[union-attr]
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                        {"role": "user", "content": transcript},
                    ],
                    max_tokens=self.max_tokens,
                    temperature=0,
                )
                text = resp.choices[0].message.content or ""
        except Exception as exc:
            raise TransientProviderError(f"{self.provider} summary failed: {exc}") from exc
        text = text.strip()
        if not text:
            raise TransientProviderError(f"{self.provider} returned an empty summary")
        return text


def build_summarizer(cfg: AssistMemConfig) -> LLMSummarizer | None:
    provider = (cfg.summary_provider or "").strip().lower()
    if not provider:
        return None
    if provider not in {"openai", "anthropic"}:
        logger.warning("summarizer: unknown provider %s", provider)
        return None
    if provider == "anthropic":
        model = cfg.summary_model or DEFAULT_ANTHROPIC_SUMMARY_MODEL
        api_key = cfg.summary_api_key or os.getenv("ANTHROPIC_API_KEY")
    else:
        model = cfg.summary_model or DEFAULT_OPENAI_SUMMARY_MODEL
        api_key = cfg.summary_api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.warning("summarizer: missing %s api key", provider)
        return None
    try:
        return LLMSummarizer(
            provider,
            model,
            api_key,
            base_url=cfg.summary_base_url,
            max_tokens=cfg.summary_max_tokens,
        )
    except Exception as exc:
        logger.exception("summarizer: client init failed", exc_info=exc)
        return None
