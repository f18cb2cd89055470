from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system"]
LinkType = Literal["category", "semantic", "keyword"]


@dataclass
class Session:
    id: str
    name: str
    created_at: str
    updated_at: str


@dataclass
class SchedulerMetadata:
    job_name: str
    type: Literal["scheduler"] = "scheduler"


@dataclass
class AttachmentMetadata:
    kind: str
    path: str | None = None
    mime_type: str | None = None
    type: Literal["attachment"] = "attachment"


@dataclass
class LocationMetadata:
    latitude: float
    longitude: float
    type: Literal["location"] = "location"


@dataclass
class ReplyMetadata:
    message_id: int
    type: Literal["reply"] = "reply"


MessageMetadata = SchedulerMetadata | AttachmentMetadata | LocationMetadata | ReplyMetadata


@dataclass
class Message:
    id: int
    session_id: str
    role: Role
    content: str
    timestamp: str
    token_count: int
    metadata: MessageMetadata | None = None

    def as_chat(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Fact:
    id: int
    category: str
    subject: str
    content: str
    created_at: str
    updated_at: str


@dataclass
class FactSearchResult:
    fact: Fact
    score: float
    vector_score: float = 0.0
    keyword_score: float = 0.0


@dataclass
class RelevantMessage:
    message: Message
    similarity: float


@dataclass
class SoulAspect:
    id: int
    aspect: str
    content: str
    created_at: str
    updated_at: str


@dataclass
class CronJob:
    id: int
    name: str
    schedule: str
    prompt: str
    channel: str
    enabled: bool
    session_id: str


@dataclass
class ConversationContext:
    messages: list[dict[str, str]]
    total_tokens: int
    summarized_count: int
    summary: str | None = None


@dataclass
class SmartContextStats:
    recent_count: int
    summarized_messages: int
    relevant_count: int


@dataclass
class SmartContext:
    recent_messages: list[Message]
    rolling_summary: str | None
    relevant_messages: list[RelevantMessage]
    total_tokens: int
    stats: SmartContextStats


@dataclass
class GraphNode:
    id: int
    subject: str
    category: str
    content: str
    group: int


@dataclass
class GraphLink:
    source: int
    target: int
    type: LinkType
    strength: float


@dataclass
class FactsGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    links: list[GraphLink] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "nodes": [asdict(node) for node in self.nodes],
            "links": [asdict(link) for link in self.links],
        }
