"""
Purpose: Request composer. Turns (session, new input, attachment) into exactly
one RequestPlan; the gateway dispatches on the plan's type.

Selection rule, first match wins:
1. image mode and no attachment            -> ImageSynthesisPlan
2. text asks for a picture, no attachment  -> ImageSynthesisPlan
3. anything else                           -> ChatPlan

An attachment always means "look at this", so it overrides both image rules.

Testing: Pure functions; no fakes needed.
"""

from __future__ import annotations
import re
from typing import Optional, Union

from .models import (
    ChatPlan,
    ImageAttachment,
    ImageSynthesisPlan,
    RequestPlan,
    Role,
    Session,
    SessionMode,
    Turn,
)
from .prompts.common import IMAGE_ONLY_PROMPT, compile_image_request
from .services.security import DefaultSecurity

_DEFAULT_IMAGE_REQUEST = compile_image_request()
_SECURITY = DefaultSecurity()


def parse_attachment(image: Union[str, ImageAttachment, None]) -> Optional[ImageAttachment]:
    if image is None or isinstance(image, ImageAttachment):
        return image
    return _SECURITY.parse_attachment(image)


def history_turns(session: Session) -> tuple[Turn, ...]:
    """Every prior message as one user/assistant turn, content untouched."""
    return tuple(
        Turn(
            role=Role.USER if m.role == Role.USER else Role.ASSISTANT,
            text=m.content,
        )
        for m in session.messages
    )


def is_image_request(text: str, pattern: Optional[re.Pattern] = None) -> bool:
    return bool((pattern or _DEFAULT_IMAGE_REQUEST).search(text or ""))


def compose_chat(
    session: Session,
    text: str,
    image: Union[str, ImageAttachment, None] = None,
    *,
    use_grounding: bool = False,
) -> ChatPlan:
    attachment = parse_attachment(image)
    new_text = text or ""
    if attachment is not None and not new_text.strip():
        new_text = IMAGE_ONLY_PROMPT
    return ChatPlan(
        prior_turns=history_turns(session),
        new_text=new_text,
        mode=session.mode,
        new_image=attachment,
        use_grounding=bool(use_grounding),
    )


def compose(
    session: Session,
    text: str,
    image: Union[str, ImageAttachment, None] = None,
    *,
    use_grounding: bool = False,
    image_request: Optional[re.Pattern] = None,
) -> RequestPlan:
    if image is None:
        if session.mode == SessionMode.IMAGE:
            return ImageSynthesisPlan(prompt=text or "", mode=session.mode)
        if is_image_request(text, image_request):
            return ImageSynthesisPlan(prompt=text, mode=session.mode)

    return compose_chat(session, text, image, use_grounding=use_grounding)
