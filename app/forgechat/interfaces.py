"""
Abstractions for pluggable services. Inversion of control: the controller
depends on these protocols, not on the OpenAI gateway or the JSON file store.
Enables fakes in tests and future provider swaps.

Common protocols:
- ModelGateway.chat(plan, system) -> ChatResult / synthesize_image(plan) -> ImageResult
- PersistenceAdapter.load() -> Optional[StoreState] / save(state) -> bool
- PromptFactory.build_system(mode) -> str and failure notices
- SecurityGuard.validate_user_input(text, image) / parse_attachment(data_url)

Testing: Use simple fake implementations to test the controller without network calls.
"""

from __future__ import annotations
from typing import Optional, Protocol
import re

from .models import (
    ChatPlan,
    ChatResult,
    FailureKind,
    ImageAttachment,
    ImageResult,
    ImageSynthesisPlan,
    SessionMode,
    StoreState,
)


class ModelGateway(Protocol):
    def chat(self, plan: ChatPlan, system: Optional[str] = None) -> ChatResult: ...

    def synthesize_image(self, plan: ImageSynthesisPlan) -> ImageResult: ...


class PersistenceAdapter(Protocol):
    def load(self) -> Optional[StoreState]: ...

    def save(self, state: StoreState) -> bool: ...


class PromptFactory(Protocol):
    def build_system(self, mode: SessionMode) -> str: ...

    def image_request(self) -> re.Pattern: ...

    def failure_notice(self, kind: FailureKind) -> str: ...


class SecurityGuard(Protocol):
    def validate_user_input(self, text: Optional[str], image: Optional[str]) -> None: ...

    def parse_attachment(self, data_url: str) -> ImageAttachment: ...
