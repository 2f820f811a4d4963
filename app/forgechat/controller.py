"""
Purpose: The single orchestration point for conversations. Owns the transcript
store and turns a user "send" into exactly one model request, then settles the
reply back into the transcript.
Prevents the UI from knowing how prompts/gateway/persistence work.

Key responsibilities:
- Restore the transcript store at start-up; persist after every mutation.
- Guard sends (empty input, bad attachment, session already in flight).
- Append the user message optimistically, compose a RequestPlan, dispatch it.
- Fall back once from image synthesis to plain chat.
- Convert every gateway failure into an assistant notice.
- Track per-session engine state: idle -> composing -> awaiting_model ->
  settling -> idle, with the reset to idle guaranteed on every exit path.
- Accumulate token usage (tokens_in, tokens_out, model_used).

Testing: Pure unit tests with fakes: fake ModelGateway and the in-memory
persistence adapter. Verify transcript contents and state transitions.
"""

from __future__ import annotations
import base64
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from . import transcript
from .composer import compose, compose_chat
from .config import Settings, get_settings
from .errors import GatewayFailure, ValidationError
from .interfaces import ModelGateway, PersistenceAdapter, PromptFactory, SecurityGuard
from .models import (
    ChatPlan,
    ChatResult,
    EngineState,
    FailureKind,
    ImageAttachment,
    ImageResult,
    ImageSynthesisPlan,
    Message,
    RequestPlan,
    Role,
    Session,
    SessionMode,
    StoreState,
)
from .persistence.session_store import JsonFileSessionStore
from .prompts import DefaultPromptFactory
from .prompts.common import EMPTY_CHAT_REPLY, EMPTY_IMAGE_CAPTION
from .services.llm_openai import OpenAIModelGateway
from .services.security import DefaultSecurity

logger = logging.getLogger(__name__)


class ChatSessionController:
    def __init__(
        self,
        gateway: ModelGateway,
        persistence: PersistenceAdapter,
        *,
        prompts: Optional[PromptFactory] = None,
        security: Optional[SecurityGuard] = None,
        default_mode: SessionMode = SessionMode.LUA,
        use_grounding: bool = False,
    ):
        self.gateway: ModelGateway = gateway
        self.persistence: PersistenceAdapter = persistence
        self.prompts: PromptFactory = prompts or DefaultPromptFactory()
        self.security: SecurityGuard = security or DefaultSecurity()
        self.default_mode = SessionMode(default_mode)
        self.use_grounding = bool(use_grounding)

        restored = self.persistence.load()
        if restored is not None:
            logger.info("Restored %d session(s)", len(restored.sessions))
        self.store = transcript.TranscriptStore(
            restored or transcript.seed_state(self.default_mode)
        )
        self._states: dict[str, EngineState] = {}

        self.tokens_in: int = 0
        self.tokens_out: int = 0
        self.model_used: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        gateway: Optional[ModelGateway] = None,
        persistence: Optional[PersistenceAdapter] = None,
    ) -> "ChatSessionController":
        """Wire the OpenAI gateway and the JSON file store from settings."""
        settings = settings or get_settings()
        return cls(
            gateway
            or OpenAIModelGateway(settings.openai_api_key, settings.llm_settings()),
            persistence
            or JsonFileSessionStore(
                settings.store_path, default_mode=settings.default_mode
            ),
            prompts=DefaultPromptFactory(settings.image_request_pattern),
            default_mode=settings.default_mode,
        )

    # ---------------------------
    # Reads
    # ---------------------------
    @property
    def state(self) -> StoreState:
        return self.store.snapshot()

    def sessions(self) -> tuple[Session, ...]:
        return self.state.sessions

    def get_session(self, session_id: str) -> Optional[Session]:
        return transcript.find_session(self.state, session_id)

    def active_session(self) -> Session:
        return transcript.active_session(self.state)

    def engine_state(self, session_id: str) -> EngineState:
        with self.store.lock:
            return self._states.get(session_id, EngineState.IDLE)

    def is_busy(self, session_id: str) -> bool:
        return self.engine_state(session_id) != EngineState.IDLE

    # ---------------------------
    # Session lifecycle
    # ---------------------------
    def _persist(self) -> None:
        try:
            saved = self.persistence.save(self.store.snapshot())
        except OSError as e:
            logger.warning("Persistence adapter raised, continuing in memory: %s", e)
            return
        if not saved:
            logger.debug("Session store not persisted; continuing in memory")

    def new_session(self, mode: Optional[SessionMode] = None) -> str:
        """Create a session at the front of the list and make it active."""
        session_id = self.store.mutate(
            transcript.create_session, SessionMode(mode or self.default_mode)
        )
        self._persist()
        return session_id

    def delete_session(self, session_id: str) -> None:
        self.store.mutate(transcript.delete_session, session_id, self.default_mode)
        self._persist()

    def rename_session(self, session_id: str, title: str) -> None:
        self.store.mutate(transcript.rename_session, session_id, title)
        self._persist()

    def set_mode(self, session_id: str, mode: SessionMode) -> None:
        """Takes effect on the next send; messages are untouched."""
        self.store.mutate(transcript.set_mode, session_id, SessionMode(mode))
        self._persist()

    def set_active(self, session_id: str) -> None:
        self.store.mutate(transcript.set_active, session_id)
        self._persist()

    def set_grounding(self, enabled: bool) -> None:
        self.use_grounding = bool(enabled)

    def flush(self) -> None:
        """Final save, e.g. on shutdown."""
        self._persist()

    def reset_usage(self) -> None:
        """Clear token counters."""
        self.tokens_in = self.tokens_out = 0
        self.model_used = None

    # ---------------------------
    # Send cycle
    # ---------------------------
    def _set_state(self, session_id: str, state: EngineState) -> None:
        with self.store.lock:
            self._states[session_id] = state

    def _claim(self, session_id: str) -> Optional[Session]:
        """Idle -> composing, atomically. None if unknown or already in flight."""
        with self.store.lock:
            session = transcript.find_session(self.store.snapshot(), session_id)
            if session is None:
                logger.info("Send rejected: unknown session %s", session_id)
                return None
            if self._states.get(session_id, EngineState.IDLE) != EngineState.IDLE:
                logger.info("Send rejected: session %s is busy", session_id)
                return None
            self._states[session_id] = EngineState.COMPOSING
            return session

    @contextmanager
    def _in_flight(self, session_id: str) -> Iterator[None]:
        try:
            yield
        finally:
            with self.store.lock:
                self._states.pop(session_id, None)

    def send(
        self,
        session_id: str,
        text: Optional[str],
        image: Optional[str] = None,
        *,
        use_grounding: Optional[bool] = None,
    ) -> Optional[Message]:
        """
        Handles one user turn end to end.
        Pattern:
        Validate input (empty text without image, malformed attachment).
        Claim the session (rejects when another send is in flight).
        Append the user message and persist.
        Compose a plan from the transcript as it was before this turn and
        dispatch it; image synthesis falls back once to chat.
        Append the assistant reply (or a failure notice) and persist.
        Output: the assistant message, or None when the send was rejected.
        """
        grounded = self.use_grounding if use_grounding is None else bool(use_grounding)
        try:
            self.security.validate_user_input(text, image)
            attachment = self.security.parse_attachment(image) if image else None
        except ValidationError as e:
            logger.info("Send rejected: %s", e)
            return None

        session = self._claim(session_id)
        if session is None:
            return None

        with self._in_flight(session_id):
            user_msg = transcript.new_message(
                Role.USER,
                text or "",
                image=attachment.to_data_url() if attachment else None,
            )
            self.store.mutate(transcript.append_messages, session_id, [user_msg])
            self._persist()

            reply = self._exchange(session, text or "", attachment, grounded)

            self._set_state(session_id, EngineState.SETTLING)
            self.store.mutate(transcript.append_messages, session_id, [reply])
            self._persist()
        return reply

    def _exchange(
        self,
        session: Session,
        text: str,
        attachment: Optional[ImageAttachment],
        grounded: bool,
    ) -> Message:
        plan = compose(
            session,
            text,
            attachment,
            use_grounding=grounded,
            image_request=self.prompts.image_request(),
        )
        self._set_state(session.id, EngineState.AWAITING_MODEL)
        try:
            try:
                return self._dispatch(plan)
            except GatewayFailure as e:
                if not isinstance(plan, ImageSynthesisPlan):
                    raise
                logger.warning(
                    "Image synthesis failed (%s); falling back to chat", e.kind.value
                )
            return self._dispatch(
                compose_chat(session, text, None, use_grounding=grounded)
            )
        except GatewayFailure as e:
            logger.warning("Model request failed (%s): %s", e.kind.value, e)
            return transcript.new_message(
                Role.ASSISTANT, self.prompts.failure_notice(e.kind)
            )
        except Exception:
            logger.exception("Model exchange failed unexpectedly")
            return transcript.new_message(
                Role.ASSISTANT, self.prompts.failure_notice(FailureKind.MALFORMED)
            )

    def _dispatch(self, plan: RequestPlan) -> Message:
        if isinstance(plan, ChatPlan):
            result = self.gateway.chat(plan, self.prompts.build_system(plan.mode))
            self._account(result)
            return self._chat_reply(result)
        if isinstance(plan, ImageSynthesisPlan):
            image = self.gateway.synthesize_image(plan)
            self._account(image)
            return self._image_reply(image)
        raise TypeError(f"Unknown request plan: {type(plan).__name__}")

    def _account(self, result: ChatResult | ImageResult) -> None:
        self.tokens_in += int(result.tokens_in or 0)
        self.tokens_out += int(result.tokens_out or 0)
        self.model_used = result.model or self.model_used

    def _chat_reply(self, result: ChatResult) -> Message:
        return transcript.new_message(
            Role.ASSISTANT,
            result.text or EMPTY_CHAT_REPLY,
            grounding_links=result.source_refs,
        )

    def _image_reply(self, result: ImageResult) -> Message:
        if result.image_blob:
            b64 = base64.b64encode(result.image_blob).decode("ascii")
            image = f"data:{result.mime_type};base64,{b64}"
        else:
            image = result.url
        return transcript.new_message(
            Role.ASSISTANT,
            result.caption or EMPTY_IMAGE_CAPTION,
            image=image,
        )
