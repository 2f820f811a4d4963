"""
Purpose: Model gateway over the OpenAI SDK. The only place that performs
network I/O. One place for auth, model options, response normalization and
error translation.

- chat(plan, system): Responses API, optional web_search_preview tool.
- synthesize_image(plan): Images API.

Every SDK error leaves this module as a GatewayFailure with a FailureKind.
No retries here: the controller owns the single fallback.

Testing: Pass a stub client; assert payload shape and error mapping.
"""

from __future__ import annotations
import base64
import binascii
import logging
from typing import Any, Callable, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    BadRequestError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
)

from ..errors import GatewayFailure
from ..models import (
    ChatPlan,
    ChatResult,
    FailureKind,
    ImageResult,
    ImageSynthesisPlan,
    LLMSettings,
    Role,
    SourceKind,
    SourceRef,
)
from .pricing import estimate_tokens_from_text

logger = logging.getLogger(__name__)

BLOCKED_CODES = {
    "content_policy_violation",
    "moderation_blocked",
    "content_filter",
}
WEB_SEARCH_TOOL = {"type": "web_search_preview"}


def _classify(e: Exception) -> FailureKind:
    if isinstance(e, (AuthenticationError, PermissionDeniedError)):
        return FailureKind.UNAUTHORIZED
    if isinstance(e, BadRequestError) and getattr(e, "code", None) in BLOCKED_CODES:
        return FailureKind.BLOCKED
    if isinstance(e, (APIConnectionError, APIStatusError)):
        return FailureKind.NETWORK
    return FailureKind.MALFORMED


def input_turns(plan: ChatPlan) -> list[dict[str, Any]]:
    """Prior turns plus the new user turn, in Responses API input shape."""
    items: list[dict[str, Any]] = []
    for turn in plan.prior_turns:
        if turn.role == Role.USER:
            items.append(
                {"role": "user", "content": [{"type": "input_text", "text": turn.text}]}
            )
        else:
            items.append({"role": "assistant", "content": turn.text})

    parts: list[dict[str, Any]] = [{"type": "input_text", "text": plan.new_text}]
    if plan.new_image is not None:
        parts.append(
            {"type": "input_image", "image_url": plan.new_image.to_data_url()}
        )
    items.append({"role": "user", "content": parts})
    return items


def extract_sources(resp: Any) -> list[SourceRef]:
    """url_citation annotations from message output, de-duplicated by URI."""
    refs: list[SourceRef] = []
    seen: set[str] = set()
    for item in getattr(resp, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for ann in getattr(part, "annotations", None) or []:
                if getattr(ann, "type", None) != "url_citation":
                    continue
                uri = getattr(ann, "url", None)
                if uri in seen:
                    continue
                if uri:
                    seen.add(uri)
                refs.append(
                    SourceRef(
                        uri=uri,
                        title=getattr(ann, "title", None),
                        kind=SourceKind.WEB,
                    )
                )
    return refs


class OpenAIModelGateway:
    def __init__(
        self,
        api_key: Optional[str],
        settings: LLMSettings,
        *,
        client: Any = None,
    ):
        self.api_key = api_key
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise GatewayFailure(FailureKind.UNAUTHORIZED, "Missing OPENAI_API_KEY")
            try:
                self._client = OpenAI(api_key=self.api_key)
            except OpenAIError as e:
                raise GatewayFailure(
                    FailureKind.UNAUTHORIZED, f"Failed to initialize OpenAI client: {e}"
                ) from e
        return self._client

    def _call(self, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except GatewayFailure:
            raise
        except OpenAIError as e:
            kind = _classify(e)
            logger.warning("OpenAI call failed (%s): %s", kind.value, e)
            raise GatewayFailure(kind, str(e)) from e

    def chat(self, plan: ChatPlan, system: Optional[str] = None) -> ChatResult:
        settings = self.settings
        kwargs: dict[str, Any] = {
            "model": settings.model,
            "input": input_turns(plan),
            "temperature": settings.temperature,
            "top_p": settings.top_p,
        }
        if system:
            kwargs["instructions"] = system
        if settings.max_output_tokens:
            kwargs["max_output_tokens"] = settings.max_output_tokens
        if plan.use_grounding:
            kwargs["tools"] = [WEB_SEARCH_TOOL]

        client = self.client
        resp = self._call(lambda: client.responses.create(**kwargs))

        details = getattr(resp, "incomplete_details", None)
        if getattr(details, "reason", None) == "content_filter":
            raise GatewayFailure(FailureKind.BLOCKED, "Response stopped by content filter")

        text = getattr(resp, "output_text", None)
        if not isinstance(text, str):
            raise GatewayFailure(FailureKind.MALFORMED, "Response carried no output text")

        usage = getattr(resp, "usage", None)
        return ChatResult(
            text=text,
            source_refs=extract_sources(resp) if plan.use_grounding else [],
            model=getattr(resp, "model", None) or settings.model,
            tokens_in=int(getattr(usage, "input_tokens", 0) or 0) if usage else 0,
            tokens_out=int(getattr(usage, "output_tokens", 0) or 0) if usage else 0,
        )

    def synthesize_image(self, plan: ImageSynthesisPlan) -> ImageResult:
        """
        Generate one image from the prompt. Tokens in and out are rough
        estimates when the API does not report usage.
        """
        settings = self.settings
        client = self.client
        resp = self._call(
            lambda: client.images.generate(
                model=settings.image_model,
                prompt=plan.prompt,
                size=settings.image_size,
                n=1,
            )
        )

        data = getattr(resp, "data", None) or []
        if not data:
            raise GatewayFailure(FailureKind.MALFORMED, "Image response had no data")

        first = data[0]
        b64 = getattr(first, "b64_json", None)
        url = getattr(first, "url", None)
        caption = getattr(first, "revised_prompt", None)
        fmt = getattr(resp, "output_format", None) or "png"

        usage = getattr(resp, "usage", None)
        tokens_in = int(getattr(usage, "input_tokens", 0) or 0) if usage else 0
        tokens_out = int(getattr(usage, "output_tokens", 0) or 0) if usage else 0
        if not usage:
            tokens_in, tokens_out = estimate_tokens_from_text(plan.prompt), 6240

        meta = {
            "caption": caption,
            "model": settings.image_model,
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }
        if b64:
            try:
                blob = base64.b64decode(b64, validate=True)
            except (binascii.Error, ValueError) as e:
                raise GatewayFailure(
                    FailureKind.MALFORMED, "Image payload is not valid base64"
                ) from e
            return ImageResult(image_blob=blob, mime_type=f"image/{fmt}", **meta)

        if url:
            return ImageResult(image_blob=b"", url=url, **meta)

        raise GatewayFailure(FailureKind.MALFORMED, "Image response had no image")
