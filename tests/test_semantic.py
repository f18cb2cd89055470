import pytest

from assistmem.config import AssistMemConfig
from assistmem.errors import ConfigurationError, IntegrityMismatch
from assistmem.redaction import redact
from assistmem.semantic import (
    cosine_similarity,
    deserialize_embedding,
    fact_embedding_text,
    get_embedding_provider,
    serialize_embedding,
)
from assistmem.summarizer import (
    PREVIOUS_SUMMARY_PREFIX,
    basic_summary,
    build_summarizer,
    previous_summary_message,
    render_transcript,
)


def test_embedding_blob_is_little_endian_float32() -> None:
    blob = serialize_embedding([1.0, -0.5, 0.25])
    assert len(blob) == 12
    assert blob[:4] == b"\x00\x00\x80\x3f"
    assert deserialize_embedding(blob) == [1.0, -0.5, 0.25]


@pytest.mark.parametrize("blob", [b"", None, b"\x00\x00\x80"])
def test_deserialize_rejects_unusable_blobs(blob) -> None:
    with pytest.raises(IntegrityMismatch):
        deserialize_embedding(blob)


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    with pytest.raises(IntegrityMismatch):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_fact_embedding_text() -> None:
    assert fact_embedding_text("pets", "dog", "Named Rex") == "pets: dog - Named Rex"


def test_provider_factory_requires_configuration() -> None:
    with pytest.raises(ConfigurationError):
        get_embedding_provider(
            AssistMemConfig(embedding_provider="openai", embedding_disabled=True)
        )
    with pytest.raises(ConfigurationError):
        get_embedding_provider(AssistMemConfig())
    with pytest.raises(ConfigurationError):
        get_embedding_provider(AssistMemConfig(embedding_provider="openai"))
    with pytest.raises(ConfigurationError, match="unknown"):
        get_embedding_provider(AssistMemConfig(embedding_provider="word2vec"))


def test_basic_summary_lists_user_topics() -> None:
    messages = [
        {"role": "user", "content": "plan the\ntrip"},
        {"role": "assistant", "content": "sure"},
        {"role": "user", "content": "plan the\ntrip"},
        {"role": "user", "content": "x" * 150},
    ]
    text = basic_summary(messages)
    lines = text.splitlines()
    assert lines[0] == "Previous conversation (4 messages) covered:"
    assert lines[1] == "- plan the trip..."
    assert lines[2] == "- " + "x" * 100 + "..."
    assert len(lines) == 3


def test_basic_summary_caps_topics_at_ten() -> None:
    messages = [{"role": "user", "content": f"topic {i}"} for i in range(30)]
    lines = basic_summary(messages).splitlines()
    # Only the last 20 user messages are considered, the first 10 of those listed.
    assert lines[1] == "- topic 10..."
    assert len(lines) == 11


def test_previous_summary_message() -> None:
    message = previous_summary_message("they like tea")
    assert message == {"role": "system", "content": PREVIOUS_SUMMARY_PREFIX + "they like tea"}


def test_transcript_redacts_secrets() -> None:
    transcript = render_transcript(
        [{"role": "user", "content": "my key is sk-ant-REDACTED"}]
    )
    assert "sk-ant" not in transcript
    assert "[REDACTED]" in transcript
    assert redact("Bearer abcdefghijklmnopqrstuvwxyz") == "[REDACTED]"


def test_build_summarizer_without_provider_or_key(monkeypatch: pytest.MonkeyPatch) -> None:
    assert build_summarizer(AssistMemConfig()) is None
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert build_summarizer(AssistMemConfig(summary_provider="anthropic")) is None
    assert build_summarizer(AssistMemConfig(summary_provider="telepathy")) is None


def test_long_transcript_keeps_previous_summary_and_newest_messages() -> None:
    messages = [previous_summary_message("they adopted a puppy")]
    messages += [{"role": "user", "content": f"message {i:03d} " + "x" * 90} for i in range(100)]

    transcript = render_transcript(messages, max_chars=2000)

    lines = transcript.splitlines()
    assert len(transcript) <= 2000
    assert lines[0] == "system: Previous summary: they adopted a puppy"
    assert lines[1].endswith("earlier message(s) omitted]")
    assert lines[-1].startswith("user: message 099")
    assert "message 000" not in transcript


def test_short_transcript_is_rendered_whole() -> None:
    messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    assert render_transcript(messages) == "user: hi\nassistant: hello"
