"""Shared prompt helpers: placeholders, seed messages, image-request policy."""

from __future__ import annotations
import re

from ..models import FailureKind, SessionMode

DEFAULT_TITLE = "New Chat"
UNTITLED_TITLE = "Untitled Session"
TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."

IMAGE_ONLY_PROMPT = "Analyze this image."
EMPTY_CHAT_REPLY = "Connection error."
EMPTY_IMAGE_CAPTION = "Here is your generated image."

WELCOME_TEXT = (
    "Welcome to ForgeChat. Ask me about Lua scripting or web development, "
    "share a screenshot for review, or ask me to draw something."
)

_SEED_BY_MODE = {
    SessionMode.LUA: "New Lua session ready. Paste a script or describe what you need.",
    SessionMode.HTML: "New web session ready. What are we building?",
    SessionMode.IMAGE: "New image session ready. Describe the picture you want.",
}

# Heuristic only: phrases meaning "generate/create/draw a picture".
# Replace with FORGECHAT_IMAGE_REQUEST_PATTERN when it misfires.
_IMAGE_NOUN = (
    r"(?:an?\s+|the\s+|some\s+)?(?:\w+\s+){0,2}?"
    r"(?:image|picture|drawing|illustration|photo|artwork|sketch|logo)s?\b"
    r"(?!\s+(?:gallery|carousel|slider|tags?|elements?|components?|upload|src"
    r"|responsive|smaller|larger|bigger|in\s+(?:react|vue|html|css)"
    r"|from\s+a\s+url))"
)
IMAGE_REQUEST_PATTERN = (
    r"\b(?:generate|create|produce|paint|design)\s+(?:me\s+)?" + _IMAGE_NOUN
    + r"|(?:^\s*(?:please\s+)?|\b(?:can|could|would)\s+you\s+(?:please\s+)?)"
    r"(?:make|render)\s+(?:me\s+)?" + _IMAGE_NOUN
    + r"|^\s*(?:please\s+)?(?:draw|paint|sketch|illustrate)\b"
    r"|\b(?:can|could|would)\s+you\s+(?:please\s+)?(?:draw|sketch|paint)\b"
    r"|\b(?:draw|sketch|paint)\s+me\b"
)


def compile_image_request(pattern: str | None = None) -> re.Pattern:
    return re.compile(pattern or IMAGE_REQUEST_PATTERN, re.IGNORECASE)


def seed_text(mode: SessionMode) -> str:
    return _SEED_BY_MODE[SessionMode(mode)]


def failure_notice(kind) -> str:
    notices = {
        FailureKind.NETWORK: (
            "I couldn't reach the model service. Check your connection and "
            "send the message again."
        ),
        FailureKind.UNAUTHORIZED: (
            "The model service rejected the credentials. Set a valid "
            "OPENAI_API_KEY and try again."
        ),
        FailureKind.BLOCKED: (
            "The request was blocked by the model's safety filter. Try "
            "rephrasing it."
        ),
        FailureKind.MALFORMED: (
            "The model returned a response I couldn't read. Please try again."
        ),
    }
    return notices[FailureKind(kind)]
