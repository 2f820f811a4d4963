import base64

import pytest

from forgechat.controller import ChatSessionController
from forgechat.models import ChatResult, ImageResult
from forgechat.persistence.session_store import InMemorySessionStore

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-png-body"
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class FakeGateway:
    """Scripted ModelGateway: each queued outcome is a result, an exception,
    or a callable taking the plan."""

    def __init__(self, chat=None, image=None):
        self.chat_outcomes = list(chat or [])
        self.image_outcomes = list(image or [])
        self.chat_calls = []
        self.image_calls = []

    @staticmethod
    def _next(queue, plan, default):
        outcome = queue.pop(0) if queue else default
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(plan)
        return outcome

    def chat(self, plan, system=None):
        self.chat_calls.append((plan, system))
        return self._next(self.chat_outcomes, plan, ChatResult(text="ok"))

    def synthesize_image(self, plan):
        self.image_calls.append(plan)
        return self._next(
            self.image_outcomes, plan, ImageResult(image_blob=PNG_BYTES)
        )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def persistence():
    return InMemorySessionStore()


@pytest.fixture
def controller(gateway, persistence):
    return ChatSessionController(gateway, persistence)
