"""Router safety guardrails: routing audit log and tool-call circuit breakers.

Guardrail logic lives here to keep the routing engine and the specialist
executors focused on their primary responsibilities.
"""

import json
import os
import time
from collections import deque
from typing import Callable, Optional

from grocery_router import config


# ── Routing audit log ─────────────────────────────────────────────────────────


class RoutingLogger:
    """Append-only JSON-lines log of supervisor routing decisions.

    Disabled when no *log_dir* is configured.
    """

    def __init__(self, log_dir: Optional[str] = config.ROUTER_LOG_DIR or None):
        self._log_path = None
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            self._log_path = os.path.join(log_dir, "routing_decisions.jsonl")

    @property
    def enabled(self) -> bool:
        return self._log_path is not None

    def log(
        self,
        conversation_id: str,
        rule: str,
        next_node: str,
        workflow_context: Optional[str],
        message: str,
    ) -> None:
        """Write a single decision entry."""
        if self._log_path is None:
            return
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "conversation": conversation_id,
            "rule": rule,
            "next": next_node,
            "workflowContext": workflow_context,
            "message": message[:200],  # keep logs compact
        }
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")


# ── Circuit breaker ───────────────────────────────────────────────────────────


class CircuitBreakerTripped(Exception):
    """Raised when a tool is called too often for one user within the window."""

    def __init__(self, tool_name: str, user_id: str, limit: int, window: int):
        self.tool_name = tool_name
        self.user_id = user_id
        super().__init__(
            f"CIRCUIT_BREAKER: Too many {tool_name} attempts "
            f"({limit} within {window}s). Please wait a minute and try again."
        )


class CircuitBreaker:
    """Sliding-window call limits keyed by ``(tool, user)``.

    Only tools named in *limits* are counted. Each key owns its own deque of
    timestamps; keys whose window has emptied are dropped, so memory stays
    bounded by the number of recently active users.
    """

    def __init__(
        self,
        limits: Optional[dict[str, int]] = None,
        window_seconds: int = config.CIRCUIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._limits = dict(config.CIRCUIT_LIMITS if limits is None else limits)
        self._window = window_seconds
        self._clock = clock
        self._calls: dict[str, deque[float]] = {}

    def check(self, tool_name: str, user_id: str) -> None:
        """Record a call and raise if the limit is exceeded."""
        limit = self._limits.get(tool_name)
        if limit is None:
            return

        self.evict_expired()
        key = f"{tool_name}:{user_id}"
        now = self._clock()
        timestamps = self._calls.setdefault(key, deque())
        # Evict timestamps outside the window
        while timestamps and timestamps[0] <= now - self._window:
            timestamps.popleft()

        if len(timestamps) >= limit:
            raise CircuitBreakerTripped(tool_name, user_id, limit, self._window)
        timestamps.append(now)

    def evict_expired(self) -> None:
        now = self._clock()
        for key in list(self._calls):
            timestamps = self._calls.get(key)
            if timestamps is not None and (not timestamps or timestamps[-1] <= now - self._window):
                self._calls.pop(key, None)

    def reset(self, user_id: Optional[str] = None) -> None:
        if user_id is None:
            self._calls.clear()
            return
        for key in [k for k in self._calls if k.endswith(f":{user_id}")]:
            self._calls.pop(key, None)

    def __len__(self) -> int:
        return len(self._calls)
