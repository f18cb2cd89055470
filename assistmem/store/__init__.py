from __future__ import annotations

from ._store import MemoryStore
from .types import (
    AttachmentMetadata,
    ConversationContext,
    CronJob,
    Fact,
    FactsGraph,
    FactSearchResult,
    LocationMetadata,
    Message,
    MessageMetadata,
    RelevantMessage,
    ReplyMetadata,
    SchedulerMetadata,
    Session,
    SmartContext,
    SoulAspect,
)

__all__ = [
    "AttachmentMetadata",
    "ConversationContext",
    "CronJob",
    "Fact",
    "FactSearchResult",
    "FactsGraph",
    "LocationMetadata",
    "MemoryStore",
    "Message",
    "MessageMetadata",
    "RelevantMessage",
    "ReplyMetadata",
    "SchedulerMetadata",
    "Session",
    "SmartContext",
    "SoulAspect",
]
