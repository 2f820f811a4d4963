"""
Purpose: Guardrails for inputs.
Content: early, predictable failures before anything reaches the model:
empty sends, attachments that are not inline images, oversized payloads.
"""

from __future__ import annotations
import base64
import binascii
import re
from typing import Optional

from ..errors import ValidationError
from ..models import ImageAttachment

DATA_URL = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w.+-]+=[\w.+-]+)*;base64,(?P<data>.*)$",
    re.DOTALL,
)

MAX_IMAGE_BYTES = 20 * 1024 * 1024


class DefaultSecurity:
    def validate_user_input(self, text: Optional[str], image: Optional[str]) -> None:
        if not (text or "").strip() and not image:
            raise ValidationError("Please enter a non-empty message.")

    def parse_attachment(self, data_url: str) -> ImageAttachment:
        """Split 'data:<mime>;base64,<payload>' into its MIME type and payload."""
        m = DATA_URL.match((data_url or "").strip())
        if not m:
            raise ValidationError("Attachment must be a base64 data URL.")

        mime = m.group("mime").lower()
        if not mime.startswith("image/"):
            raise ValidationError(f"Unsupported attachment type: {mime}")

        payload = re.sub(r"\s+", "", m.group("data"))
        if not payload:
            raise ValidationError("Attachment is empty.")
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Attachment is not valid base64.")
        if len(raw) > MAX_IMAGE_BYTES:
            raise ValidationError("Attachment is too large.")

        return ImageAttachment(mime_type=mime, data=payload)
