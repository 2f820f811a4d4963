"""
Purpose: Application settings loaded from environment variables (.env aware).
Keep all credentials and model options centralized here so the controller and
gateway never read os.environ themselves.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .models import LLMSettings, SessionMode

load_dotenv()

DEFAULT_STORE_PATH = Path.home() / ".forgechat" / "sessions.json"


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def _env_mode(name: str, default: SessionMode) -> SessionMode:
    raw = (os.getenv(name) or "").strip().lower()
    try:
        return SessionMode(raw) if raw else default
    except ValueError:
        return default


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY") or None
        self.chat_model: str = os.getenv("FORGECHAT_CHAT_MODEL", "gpt-4o")
        self.image_model: str = os.getenv("FORGECHAT_IMAGE_MODEL", "gpt-image-1")
        self.image_size: str = os.getenv("FORGECHAT_IMAGE_SIZE", "1024x1024")
        self.temperature: float = _env_float("FORGECHAT_TEMPERATURE", 0.8)
        self.top_p: float = _env_float("FORGECHAT_TOP_P", 0.95)
        self.max_output_tokens: Optional[int] = _env_int(
            "FORGECHAT_MAX_OUTPUT_TOKENS"
        )
        self.default_mode: SessionMode = _env_mode(
            "FORGECHAT_DEFAULT_MODE", SessionMode.LUA
        )
        self.store_path: Path = Path(
            os.getenv("FORGECHAT_STORE_PATH") or DEFAULT_STORE_PATH
        ).expanduser()
        self.image_request_pattern: Optional[str] = (
            os.getenv("FORGECHAT_IMAGE_REQUEST_PATTERN") or None
        )
        self.log_level: str = os.getenv("FORGECHAT_LOG_LEVEL", "INFO").upper()

    def llm_settings(self) -> LLMSettings:
        return LLMSettings(
            model=self.chat_model,
            temperature=self.temperature,
            top_p=self.top_p,
            max_output_tokens=self.max_output_tokens,
            image_model=self.image_model,
            image_size=self.image_size,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a basic root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    logging.getLogger("forgechat").setLevel(
        getattr(logging, (level or "INFO").upper(), logging.INFO)
    )
