"""Classification oracle access.

The router only ever talks to a language model through ``ainvoke(messages)``
and reads ``.content`` from the answer, so anything with that shape can stand
in for the Gemini chat model: tests and credential-less environments use
``ScriptedOracle``.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Iterable, Optional, Union

from langchain_core.messages import AIMessage, BaseMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from grocery_router import config
from grocery_router.parsing import extract_llm_text

logger = logging.getLogger(__name__)


def build_chat_model() -> ChatGoogleGenerativeAI:
    """Build the bare Gemini chat model used by the oracle and specialists."""
    return ChatGoogleGenerativeAI(
        model=config.MODEL_NAME,
        temperature=config.TEMPERATURE,
        google_api_key=config.GOOGLE_API_KEY or None,
        max_retries=2,
    )


Reply = Union[str, BaseMessage, Exception]


class ScriptedOracle:
    """Deterministic oracle that replays queued replies.

    Each call pops the next reply; an ``Exception`` instance is raised instead
    of returned. ``responder`` (if given) computes replies from the prompt
    once the queue is empty; otherwise the empty string is returned, which
    every caller treats as an unparseable answer and degrades gracefully.
    """

    def __init__(
        self,
        replies: Iterable[Reply] = (),
        responder: Optional[Callable[[list], Reply]] = None,
    ):
        self._replies: deque[Reply] = deque(replies)
        self._responder = responder
        self.calls: list[list] = []

    def queue(self, *replies: Reply) -> None:
        self._replies.extend(replies)

    def bind_tools(self, tools, **kwargs) -> "ScriptedOracle":
        return self

    async def ainvoke(self, messages, config=None, **kwargs) -> BaseMessage:
        self.calls.append(list(messages))
        if self._replies:
            reply = self._replies.popleft()
        elif self._responder is not None:
            reply = self._responder(list(messages))
        else:
            reply = ""
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, BaseMessage):
            return reply
        return AIMessage(content=reply)


# Lazily initialised so the module can be imported without side-effects.
_default_oracle = None


def get_default_oracle():
    """Return the shared Gemini oracle, or a scripted one without credentials."""
    global _default_oracle
    if _default_oracle is None:
        if config.GOOGLE_API_KEY:
            _default_oracle = build_chat_model()
        else:
            logger.warning("GOOGLE_API_KEY is not set; using an offline scripted oracle")
            _default_oracle = ScriptedOracle()
    return _default_oracle


async def ask_oracle(oracle, messages: list, timeout: float = config.ORACLE_TIMEOUT_SECONDS) -> str:
    """Invoke *oracle* with a timeout and return its text answer.

    Raises whatever the oracle raises, or ``asyncio.TimeoutError``; callers
    own the fallback.
    """
    response = await asyncio.wait_for(oracle.ainvoke(messages), timeout)
    return extract_llm_text(response)
