import base64
from types import SimpleNamespace

import httpx
import openai
import pytest

from forgechat.errors import GatewayFailure
from forgechat.models import (
    ChatPlan,
    FailureKind,
    ImageAttachment,
    ImageSynthesisPlan,
    LLMSettings,
    Role,
    SessionMode,
    SourceKind,
    Turn,
)
from forgechat.services.llm_openai import OpenAIModelGateway, input_turns

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")


def _status_error(cls, status, code=None):
    return cls(
        "boom",
        response=httpx.Response(status, request=REQUEST),
        body={"code": code, "message": "boom"} if code else None,
    )


class StubClient:
    def __init__(self, response=None, image=None, error=None):
        self.response = response
        self.image = image
        self.error = error
        self.calls = []
        self.responses = SimpleNamespace(create=self._create)
        self.images = SimpleNamespace(generate=self._generate)

    def _create(self, **kwargs):
        self.calls.append(("responses", kwargs))
        if self.error:
            raise self.error
        return self.response

    def _generate(self, **kwargs):
        self.calls.append(("images", kwargs))
        if self.error:
            raise self.error
        return self.image


def _settings(**overrides):
    return LLMSettings(model="gpt-4o", **overrides)


def _plan(**overrides):
    data = dict(
        prior_turns=(Turn(Role.ASSISTANT, "welcome"), Turn(Role.USER, "hi")),
        new_text="what about tables?",
        mode=SessionMode.LUA,
    )
    data.update(overrides)
    return ChatPlan(**data)


def _response(text="answer", output=(), **extra):
    return SimpleNamespace(
        output_text=text,
        output=list(output),
        model="gpt-4o-2024",
        usage=SimpleNamespace(input_tokens=12, output_tokens=34),
        incomplete_details=None,
        **extra,
    )


def test_chat_sends_instructions_turns_and_sampling():
    client = StubClient(response=_response())
    gw = OpenAIModelGateway("sk-test", _settings(max_output_tokens=256), client=client)

    result = gw.chat(_plan(), system="You are ForgeChat.")

    kind, kwargs = client.calls[0]
    assert kind == "responses"
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["instructions"] == "You are ForgeChat."
    assert kwargs["temperature"] == 0.8
    assert kwargs["top_p"] == 0.95
    assert kwargs["max_output_tokens"] == 256
    assert "tools" not in kwargs
    assert [item["role"] for item in kwargs["input"]] == ["assistant", "user", "user"]
    assert all("system" != item["role"] for item in kwargs["input"])

    assert result.text == "answer"
    assert result.source_refs == []
    assert (result.tokens_in, result.tokens_out) == (12, 34)
    assert result.model == "gpt-4o-2024"


def test_new_turn_carries_split_image():
    plan = _plan(new_image=ImageAttachment("image/webp", "UklGRg=="))

    last = input_turns(plan)[-1]

    assert last["role"] == "user"
    assert last["content"][0] == {"type": "input_text", "text": "what about tables?"}
    assert last["content"][1] == {
        "type": "input_image",
        "image_url": "data:image/webp;base64,UklGRg==",
    }


def test_grounded_chat_enables_search_and_collects_citations():
    def citation(url, title):
        return SimpleNamespace(type="url_citation", url=url, title=title)

    output = [
        SimpleNamespace(type="web_search_call"),
        SimpleNamespace(
            type="message",
            content=[
                SimpleNamespace(
                    type="output_text",
                    annotations=[
                        citation("https://lua.org/manual", "Lua manual"),
                        citation("https://lua.org/manual", "Lua manual again"),
                        citation("https://www.lua.org/pil", "PiL"),
                    ],
                )
            ],
        ),
    ]
    client = StubClient(response=_response(output=output))
    gw = OpenAIModelGateway("sk-test", _settings(), client=client)

    result = gw.chat(_plan(use_grounding=True))

    assert client.calls[0][1]["tools"] == [{"type": "web_search_preview"}]
    assert [(r.uri, r.title) for r in result.source_refs] == [
        ("https://lua.org/manual", "Lua manual"),
        ("https://www.lua.org/pil", "PiL"),
    ]
    assert all(r.kind == SourceKind.WEB for r in result.source_refs)


def test_missing_api_key_is_unauthorized_not_a_crash():
    gw = OpenAIModelGateway(None, _settings())

    with pytest.raises(GatewayFailure) as exc:
        gw.chat(_plan())
    assert exc.value.kind == FailureKind.UNAUTHORIZED

    with pytest.raises(GatewayFailure) as exc:
        gw.synthesize_image(ImageSynthesisPlan("a cat", SessionMode.IMAGE))
    assert exc.value.kind == FailureKind.UNAUTHORIZED


@pytest.mark.parametrize(
    "error,kind",
    [
        (_status_error(openai.AuthenticationError, 401), FailureKind.UNAUTHORIZED),
        (_status_error(openai.PermissionDeniedError, 403), FailureKind.UNAUTHORIZED),
        (_status_error(openai.RateLimitError, 429), FailureKind.NETWORK),
        (_status_error(openai.InternalServerError, 500), FailureKind.NETWORK),
        (openai.APIConnectionError(request=REQUEST), FailureKind.NETWORK),
        (openai.APITimeoutError(request=REQUEST), FailureKind.NETWORK),
        (
            _status_error(openai.BadRequestError, 400, "content_policy_violation"),
            FailureKind.BLOCKED,
        ),
        (
            _status_error(openai.BadRequestError, 400, "moderation_blocked"),
            FailureKind.BLOCKED,
        ),
    ],
)
def test_sdk_errors_map_to_failure_kinds(error, kind):
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(error=error))

    with pytest.raises(GatewayFailure) as exc:
        gw.chat(_plan())

    assert exc.value.kind == kind


def test_content_filtered_response_is_blocked():
    resp = _response(text="")
    resp.incomplete_details = SimpleNamespace(reason="content_filter")
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(response=resp))

    with pytest.raises(GatewayFailure) as exc:
        gw.chat(_plan())

    assert exc.value.kind == FailureKind.BLOCKED


def test_response_without_text_is_malformed():
    resp = SimpleNamespace(output=[], usage=None, incomplete_details=None)
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(response=resp))

    with pytest.raises(GatewayFailure) as exc:
        gw.chat(_plan())

    assert exc.value.kind == FailureKind.MALFORMED


def test_image_synthesis_decodes_inline_payload():
    png = b"\x89PNGdata"
    image = SimpleNamespace(
        data=[
            SimpleNamespace(
                b64_json=base64.b64encode(png).decode(),
                url=None,
                revised_prompt="A silver spaceship",
            )
        ],
        output_format="png",
        usage=SimpleNamespace(input_tokens=9, output_tokens=4160),
    )
    client = StubClient(image=image)
    gw = OpenAIModelGateway(
        "sk-test", _settings(image_model="gpt-image-1", image_size="1024x1024"), client=client
    )

    result = gw.synthesize_image(ImageSynthesisPlan("draw a spaceship", SessionMode.LUA))

    kind, kwargs = client.calls[0]
    assert kind == "images"
    assert kwargs == {
        "model": "gpt-image-1",
        "prompt": "draw a spaceship",
        "size": "1024x1024",
        "n": 1,
    }
    assert result.image_blob == png
    assert result.mime_type == "image/png"
    assert result.caption == "A silver spaceship"
    assert (result.tokens_in, result.tokens_out) == (9, 4160)


def test_image_synthesis_accepts_url_only_results():
    image = SimpleNamespace(
        data=[SimpleNamespace(b64_json=None, url="https://img.example/1.png")]
    )
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(image=image))

    result = gw.synthesize_image(ImageSynthesisPlan("a boat", SessionMode.IMAGE))

    assert result.image_blob == b""
    assert result.url == "https://img.example/1.png"
    assert result.tokens_out == 6240


@pytest.mark.parametrize(
    "image",
    [
        SimpleNamespace(data=[]),
        SimpleNamespace(data=[SimpleNamespace(b64_json=None, url=None)]),
        SimpleNamespace(data=[SimpleNamespace(b64_json="@@not-base64@@", url=None)]),
    ],
)
def test_unusable_image_results_are_malformed(image):
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(image=image))

    with pytest.raises(GatewayFailure) as exc:
        gw.synthesize_image(ImageSynthesisPlan("a boat", SessionMode.IMAGE))

    assert exc.value.kind == FailureKind.MALFORMED


def test_blocked_image_prompt():
    error = _status_error(openai.BadRequestError, 400, "moderation_blocked")
    gw = OpenAIModelGateway("sk-test", _settings(), client=StubClient(error=error))

    with pytest.raises(GatewayFailure) as exc:
        gw.synthesize_image(ImageSynthesisPlan("something", SessionMode.IMAGE))

    assert exc.value.kind == FailureKind.BLOCKED
