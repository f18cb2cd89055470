from __future__ import annotations

import re

# Secrets that users sometimes paste into chat and that must not reach a
# third-party summarizer.
REDACTION_PATTERNS = [
    re.compile(r"api[_-]?key\s*[:=]\s*['\"]?[A-Za-z0-9_-]{20,}", re.IGNORECASE),
    re.compile(r"sk-(?:ant-)?[A-Za-z0-9_-]{10,}"),
    re.compile(r"\b\d{8,10}:[A-Za-z0-9_-]{35}\b"),
    re.compile(r"bearer\s+[A-Za-z0-9._~+/-]{20,}=*", re.IGNORECASE),
]


def redact(text: str) -> str:
    redacted = text
    for pattern in REDACTION_PATTERNS:
        redacted = pattern.sub("[REDACTED]", redacted)
    return redacted
