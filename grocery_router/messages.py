"""Annotated message helpers.

Every entry in ``ConversationState.messages`` is an *annotated message*: a
plain dict wrapping a LangChain chat message with routing metadata (role,
originating agent, sender, timestamp and an optional progress marker).
Progress entries flagged ``ephemeral`` are transient UI feedback; the
messages reducer caps them separately from durable history.
"""

import time
import uuid
from typing import Any, Iterable, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from grocery_router import config

ROLE_BY_TYPE = {"human": "user", "ai": "assistant", "system": "system"}

_MESSAGE_CLASS_BY_ROLE = {
    "user": HumanMessage,
    "assistant": AIMessage,
    "system": SystemMessage,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def annotate(
    message: BaseMessage,
    role: str,
    agent: Optional[str] = None,
    sender_id: Optional[str] = None,
    progress: Optional[dict] = None,
) -> dict:
    """Wrap *message* with routing metadata."""
    entry: dict[str, Any] = {
        "id": uuid.uuid4().hex,
        "message": message,
        "role": role,
        "timestamp": now_ms(),
    }
    if agent:
        entry["agent"] = agent
    if sender_id:
        entry["senderId"] = sender_id
    if progress:
        entry["progress"] = progress
    return entry


def assistant_message(content: str, agent: Optional[str] = None) -> dict:
    """Shorthand for a permanent assistant reply."""
    return annotate(AIMessage(content=content), "assistant", agent=agent)


def ensure_annotated(raw: Any) -> dict:
    """Normalize a raw chat message (or tuple/str) into annotated form.

    Already-annotated entries are returned as-is, gaining an ``id`` if they
    lack one. LangChain messages map ``human``→user, ``ai``→assistant,
    ``system``→system; any other type defaults to user.
    """
    if isinstance(raw, dict) and "message" in raw:
        if raw.get("id"):
            return raw
        return {**raw, "id": uuid.uuid4().hex}

    if isinstance(raw, BaseMessage):
        return annotate(raw, ROLE_BY_TYPE.get(raw.type, "user"))

    if isinstance(raw, tuple) and len(raw) == 2:
        role = {"human": "user", "ai": "assistant"}.get(raw[0], raw[0])
        if role not in _MESSAGE_CLASS_BY_ROLE:
            role = "user"
        return annotate(_MESSAGE_CLASS_BY_ROLE[role](content=str(raw[1])), role)

    return annotate(HumanMessage(content=str(raw)), "user")


def is_ephemeral(entry: dict) -> bool:
    progress = entry.get("progress") or {}
    return bool(progress.get("isProgressUpdate") and progress.get("ephemeral") is True)


def message_text(entry: Any) -> str:
    """Return the text content of an annotated or raw message."""
    message = entry.get("message") if isinstance(entry, dict) else entry
    content = getattr(message, "content", message)
    if isinstance(content, list):
        # Gemini may return content blocks
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get("text", "")))
            else:
                parts.append(str(block))
        return "".join(parts)
    return "" if content is None else str(content)


def latest_user_text(messages: Iterable[dict]) -> str:
    """Walk backwards to find the most recent user message text."""
    for entry in reversed(list(messages)):
        if entry.get("role") == "user":
            text = message_text(entry)
            if text:
                return text
    return ""


def user_texts(messages: Iterable[dict], limit: int) -> list[str]:
    """Return up to *limit* user message texts, most recent first."""
    texts = []
    for entry in reversed(list(messages)):
        if entry.get("role") == "user" and message_text(entry):
            texts.append(message_text(entry))
            if len(texts) == limit:
                break
    return texts


def last_permanent(messages: Iterable[dict]) -> Optional[dict]:
    for entry in reversed(list(messages)):
        if not is_ephemeral(entry):
            return entry
    return None


# ── Progress messages ─────────────────────────────────────────────────────────


def create_progress_message(
    content: str,
    agent: str = "supervisor",
    step: str = "routing",
    ephemeral: bool = True,
) -> dict:
    """Build a progress entry the UI may render and auto-dismiss."""
    return annotate(
        AIMessage(content=content),
        "assistant",
        agent=agent,
        progress={
            "isProgressUpdate": True,
            "step": step,
            "agent": agent,
            "ephemeral": ephemeral,
            "autoRemoveMs": config.PROGRESS_AUTO_REMOVE_MS,
        },
    )


def agent_progress_text(agent: str, workflow_context: Optional[str] = None) -> str:
    """Human-readable "what's happening now" text for a delegation."""
    if agent == "catalog":
        return "🛍️ Searching our catalog..."
    if agent == "deals":
        return "🏷️ Checking for deals..."
    if agent == "cart_and_checkout":
        if workflow_context in ("process_checkout", "prepare_checkout"):
            return "💳 Processing checkout..."
        return "🛒 Managing your cart..."
    if agent == "payment":
        return "💳 Managing payments..."
    if agent == "notification_agent":
        return "📧 Sending notifications..."
    return f"⏳ Delegating to {agent}..."


# ── Specialist context ───────────────────────────────────────────────────────


def build_agent_context(
    messages: Iterable[dict],
    target_agent: str,
    current_user_message: str,
    max_entries: int = config.CONTEXT_MAX_ENTRIES,
) -> str:
    """Render a compact, specialist-scoped transcript.

    User and system lines are always eligible; assistant lines only when the
    same specialist produced them. Duplicate contents keep their most recent
    occurrence. ``USER_LATEST`` is appended unless some line already carries
    the current message verbatim.
    """
    relevant = []
    for entry in messages:
        if is_ephemeral(entry):
            continue
        role = entry.get("role")
        if role in ("user", "system"):
            relevant.append(entry)
        elif role == "assistant" and entry.get("agent") == target_agent:
            relevant.append(entry)

    seen: set[str] = set()
    deduped = []
    for entry in reversed(relevant):
        text = message_text(entry)
        if not text or text in seen:
            continue
        seen.add(text)
        deduped.append(entry)
    deduped.reverse()

    lines = []
    for entry in deduped[-max_entries:] if max_entries > 0 else []:
        role = entry.get("role")
        source = entry.get("agent") if role == "assistant" else role
        lines.append(f"{str(source).upper()}: {message_text(entry)}")

    current = (current_user_message or "").strip()
    if current and not any(current in line for line in lines):
        lines.append(f"USER_LATEST: {current}")

    return "\n\n".join(lines)
