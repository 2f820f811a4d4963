"""
Canonical data shapes, shared truth for typing/validation between layers.

Typical contents:
- Message, SourceRef, Session, StoreState (transcript data, immutable).
- ChatPlan / ImageSynthesisPlan (one outbound model call each).
- ChatResult / ImageResult (normalized gateway output).
- LLMSettings (model, temperature, top_p, max_output_tokens).

Testing: Trivial; mostly types. Transitions live in transcript.py.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union
from enum import Enum


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionMode(str, Enum):
    LUA = "lua"
    HTML = "html"
    IMAGE = "image"


class SourceKind(str, Enum):
    WEB = "web"
    MAP = "map"


class FailureKind(str, Enum):
    NETWORK = "network"
    BLOCKED = "blocked-by-safety-filter"
    MALFORMED = "malformed-response"
    UNAUTHORIZED = "unauthorized"


class EngineState(str, Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    AWAITING_MODEL = "awaiting_model"
    SETTLING = "settling"


@dataclass(frozen=True)
class SourceRef:
    uri: Optional[str] = None
    title: Optional[str] = None
    kind: SourceKind = SourceKind.WEB


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    timestamp: int
    image: Optional[str] = None
    grounding_links: tuple[SourceRef, ...] = ()


@dataclass(frozen=True)
class Session:
    id: str
    title: str
    mode: SessionMode
    messages: tuple[Message, ...] = ()
    created_at: int = 0


@dataclass(frozen=True)
class StoreState:
    sessions: tuple[Session, ...]
    active_session_id: str


@dataclass(frozen=True)
class ImageAttachment:
    """Inline image split into its declared MIME type and base64 payload."""

    mime_type: str
    data: str

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str


@dataclass(frozen=True)
class ChatPlan:
    prior_turns: tuple[Turn, ...]
    new_text: str
    mode: SessionMode
    new_image: Optional[ImageAttachment] = None
    use_grounding: bool = False


@dataclass(frozen=True)
class ImageSynthesisPlan:
    prompt: str
    mode: SessionMode


RequestPlan = Union[ChatPlan, ImageSynthesisPlan]


@dataclass
class ChatResult:
    text: str
    source_refs: list[SourceRef] = field(default_factory=list)
    model: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass
class ImageResult:
    image_blob: bytes
    mime_type: str = "image/png"
    caption: Optional[str] = None
    url: Optional[str] = None
    model: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass
class LLMSettings:
    model: str
    temperature: float = 0.8
    top_p: float = 0.95
    max_output_tokens: Optional[int] = None
    image_model: str = "gpt-image-1"
    image_size: str = "1024x1024"


@dataclass(frozen=True)
class Price:
    input_per_1M: float
    output_per_1M: float
