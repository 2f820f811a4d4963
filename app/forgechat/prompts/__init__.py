"""Facade that keeps the DefaultPromptFactory API stable for the controller."""

from __future__ import annotations
from typing import Optional
import re

from forgechat.models import FailureKind, SessionMode
from . import modes as _modes
from . import common as _common


class DefaultPromptFactory:
    def __init__(self, image_request_pattern: Optional[str] = None) -> None:
        self._image_request = _common.compile_image_request(image_request_pattern)

    # CHAT
    def build_system(self, mode: SessionMode) -> str:
        return _modes.build_system(mode)

    def image_request(self) -> re.Pattern:
        return self._image_request

    # NOTICES
    def failure_notice(self, kind: FailureKind) -> str:
        return _common.failure_notice(kind)
