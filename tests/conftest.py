"""Shared fixtures: scripted oracle, fake specialists and router resources.

Nothing here talks to a live model or backend.
"""

from collections import deque

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from grocery_router.cache import ResultCache
from grocery_router.graph import RouterResources
from grocery_router.guardrails import RoutingLogger
from grocery_router.messages import annotate, assistant_message
from grocery_router.oracle import ScriptedOracle


class FakeSpecialist:
    """Replays queued replies; an Exception instance is raised instead."""

    def __init__(self, *replies):
        self.replies = deque(replies)
        self.calls: list = []

    def queue(self, *replies):
        self.replies.extend(replies)

    async def ainvoke(self, payload, session_id=None):
        self.calls.append(payload)
        reply = self.replies.popleft() if self.replies else "Done."
        if isinstance(reply, Exception):
            raise reply
        return {"messages": [AIMessage(content=reply)], "content": reply}

    @property
    def last_text(self) -> str:
        payload = self.calls[-1]
        return payload["messages"][0] if isinstance(payload, dict) else payload


class FakeNotifier:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else {"ok": True, "result": {"status": 1}}
        self.error = error
        self.sent: list[dict] = []

    async def send(self, payload):
        self.sent.append(payload)
        if self.error:
            raise self.error
        return self.result


def user_entry(text: str, user_id: str = "u1") -> dict:
    return annotate(HumanMessage(content=text), "user", sender_id=user_id)


def make_state(text: str = "", *, history=(), **fields) -> dict:
    """A conversation state whose latest user message is *text*."""
    messages = list(history)
    if text:
        messages.append(user_entry(text))
    return {"messages": messages, "userId": "u1", "conversationId": "c1", **fields}


def handback_entry(agent: str, text: str = "done") -> dict:
    return assistant_message(text, agent=agent)


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def cache():
    return ResultCache(ttl_seconds=30)


@pytest.fixture
def specialists():
    return {
        name: FakeSpecialist()
        for name in ("catalog", "deals", "cart_and_checkout", "payment")
    }


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def resources(oracle, cache, specialists, notifier):
    return RouterResources(
        oracle=oracle,
        specialists=specialists,
        notifier=notifier,
        cache=cache,
        routing_logger=RoutingLogger(log_dir=None),
    )
