"""
UI layer
Purpose: Streamlit-only glue. Renders the session list, transcript and input
widgets, and delegates all work to the controller. Keeps UI concerns
(layout/state widgets) separate from the session engine so the engine can be
unit tested without Streamlit.
"""

import base64
from typing import Optional

import streamlit as st

from forgechat.config import configure_logging, get_settings
from forgechat.controller import ChatSessionController
from forgechat.models import Message, Role, SessionMode
from forgechat.services.pricing import estimate_cost


# ---------------------------
# Page config
# ---------------------------
st.set_page_config(
    page_title="ForgeChat",
    page_icon="🛠️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---------------------------
# UI constants
# ---------------------------
MODE_LABELS = {
    SessionMode.LUA: "Lua scripting",
    SessionMode.HTML: "Full-stack web",
    SessionMode.IMAGE: "Image studio",
}
MODES = list(MODE_LABELS.keys())

# ---------------------------
# Session state init
# ---------------------------
settings = get_settings()
configure_logging(settings.log_level)

st_session = st.session_state
st_session.setdefault("use_grounding", False)
st_session.setdefault("upload_key", 0)
st_session.setdefault("renaming", None)


@st.cache_resource
def get_controller() -> ChatSessionController:
    """One controller per server process; the store is process-wide."""
    return ChatSessionController.from_settings(settings)


# ---------------------------
# Helpers
# ---------------------------
def to_data_url(uploaded) -> Optional[str]:
    """Uploaded file -> 'data:<mime>;base64,<payload>'."""
    if uploaded is None:
        return None
    b64 = base64.b64encode(uploaded.getvalue()).decode("ascii")
    return f"data:{uploaded.type or 'image/png'};base64,{b64}"


def render_image(ref: str) -> None:
    if ref.startswith("data:"):
        payload = ref.split(",", 1)[1] if "," in ref else ""
        try:
            st.image(base64.b64decode(payload), width=480)
        except ValueError:
            st.error("Image could not be decoded.")
        return
    st.image(ref, width=480)


def render_message(msg: Message) -> None:
    with st.chat_message(msg.role.value):
        if msg.image:
            render_image(msg.image)
        if msg.content:
            st.markdown(msg.content)
        links = [g for g in msg.grounding_links if g.uri]
        if links:
            st.caption(
                "Sources: "
                + " · ".join(f"[{g.title or g.uri}]({g.uri})" for g in links)
            )


controller = get_controller()

# ---------------------------
# SIDEBAR: sessions & settings
# ---------------------------
with st.sidebar:
    st.markdown("# ForgeChat")

    if not settings.openai_api_key:
        st.warning("OPENAI_API_KEY is not set. Replies will report the missing key.")

    if st.button("➕ New session", use_container_width=True):
        controller.new_session()
        st.rerun()

    st.markdown("## Sessions")
    active = controller.active_session()
    for s in controller.sessions():
        c1, c2, c3 = st.columns([6, 1, 1])
        with c1:
            label = ("▶ " if s.id == active.id else "") + s.title
            if st.button(label, key=f"open_{s.id}", use_container_width=True):
                controller.set_active(s.id)
                st.rerun()
        with c2:
            if st.button("✏️", key=f"rename_{s.id}", help="Rename"):
                st_session.renaming = s.id
                st.rerun()
        with c3:
            if st.button(
                "🗑️",
                key=f"delete_{s.id}",
                help="Delete",
                disabled=controller.is_busy(s.id),
            ):
                controller.delete_session(s.id)
                st.rerun()

        if st_session.renaming == s.id:
            new_title = st.text_input("Title", value=s.title, key=f"title_{s.id}")
            if st.button("Save title", key=f"save_{s.id}"):
                controller.rename_session(s.id, new_title)
                st_session.renaming = None
                st.rerun()

    st.divider()
    st.markdown("## Settings")
    active = controller.active_session()
    mode = st.selectbox(
        "Mode",
        MODES,
        index=MODES.index(active.mode),
        format_func=lambda m: MODE_LABELS[m],
    )
    if mode != active.mode:
        controller.set_mode(active.id, mode)
        st.rerun()

    st_session.use_grounding = st.toggle(
        "Web grounding", value=st_session.use_grounding
    )
    controller.set_grounding(st_session.use_grounding)

    st.divider()
    st.markdown("## Usage")
    model_used = controller.model_used or settings.chat_model
    st.metric("Tokens (in)", f"{controller.tokens_in:,}")
    st.metric("Tokens (out)", f"{controller.tokens_out:,}")
    st.metric(
        "Estimated cost based on last used model",
        f"${estimate_cost(model_used, controller.tokens_in, controller.tokens_out):,.4f}",
    )

# ---------------------------
# MAIN: transcript & input
# ---------------------------
active = controller.active_session()
st.subheader(active.title)
st.caption(MODE_LABELS[active.mode])

for msg in active.messages:
    render_message(msg)

busy = controller.is_busy(active.id)
uploaded = st.file_uploader(
    "Attach an image",
    type=["png", "jpg", "jpeg", "webp", "gif"],
    key=f"upload_{st_session.upload_key}",
    disabled=busy,
)
raw = st.chat_input(
    "Ask about Lua, web code, or describe an image…", disabled=busy
)

if raw is not None:
    image = to_data_url(uploaded)
    if not raw.strip() and not image:
        st.toast("Please enter a non-empty message.", icon="⚠️")
    else:
        render_message(
            Message(id="pending", role=Role.USER, content=raw, timestamp=0, image=image)
        )
        with st.spinner("Thinking…"):
            controller.send(active.id, raw, image)
        st_session.upload_key += 1
        st.rerun()

st.divider()
st.caption(
    "Privacy tip: sessions are stored unencrypted in "
    f"{settings.store_path}. Do not paste secrets."
)
