"""Specialist executors.

Each specialist is a small ReAct-style graph over its own thread:

    ┌──────────┐      tool calls?      ┌───────────┐
    │  agent   │ ─────────────────────▶│   tools   │
    │(call_model)│                      │ (guarded) │
    └──────────┘◀─────────────────────└───────────┘
         │                                  │
         ├─ iteration limit ──▶ [limit_reached] ──▶ END
         │                                  └─ breaker tripped ──▶ [circuit_open] ──▶ END
         └─ no tool calls ──▶ END

The router's specialist nodes only see ``ainvoke(text) -> {"content"}``;
everything else (prompting, tools, guardrails, per-user threads) lives here.
"""

import logging
from datetime import date
from typing import Annotated, Iterable, Optional, TypedDict

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.prebuilt import ToolNode

from grocery_router import config
from grocery_router.guardrails import CircuitBreaker, CircuitBreakerTripped
from grocery_router.messages import message_text
from shop_tools import get_tools

logger = logging.getLogger(__name__)


class SpecialistState(TypedDict):
    messages: Annotated[list, add_messages]
    iteration_count: int
    circuit_message: Optional[str]


# ── Role prompts ──────────────────────────────────────────────────────────────

CATALOG_PROMPT = """You are the Catalog Specialist for product discovery in a grocery shopping assistant.

Responsibilities:
- Search and browse grocery products with the browse_catalog tool
- Provide product information with regular catalog prices only (no promotional pricing)
- Recommend alternatives and related products
- Help customers explore categories and filter results

Important:
- ONLY show regular catalog prices, never deal prices
- Always use the tool for current, accurate product data
- You do NOT handle deals, cart operations, checkout, or payments

Today is {today}."""

DEALS_PROMPT = """You are the Deals Specialist for a grocery shopping assistant. Your job is to find and present product deals.

Use check_product_deals to find active deals for the product the user mentions.

When presenting a deal, include the product and deal description, original vs. deal
price, total savings for the requested quantity, expiry date and any requirements,
then ask: "Would you like to apply this deal?"

If no deal exists, say: "No current deals for [product]." and mention that it can be
added at the regular price.

Focus only on item-specific deals for the current week. Today is {today}."""

CART_PROMPT = """You are the Cart and Checkout specialist of a grocery shopping assistant.

Directives:
1. Execute structured requests from the supervisor immediately, without asking for confirmation.
2. Manage the shopping cart with the provided tools.
3. Call tools with exactly the parameters they declare.

User id: extract the user_id from messages formatted as [userId:USER_ID]. If absent, use
"{default_user}". Every tool call that takes a user_id MUST include it.

Tools:
- add_to_cart: for "add item to cart" requests. Confirm the item was added; do not show the
  cart unless asked.
- get_cart: for "view cart" requests, and at most ONCE per request.
- checkout_cart: ONLY for explicit checkout requests. If the cart is not in the message,
  call get_cart first, then pass the cart as cart_data.

If a tool fails, state the error clearly and do not retry it.

Today is {today}."""

PAYMENT_PROMPT = """You are the Payment Specialist of a grocery shopping assistant.

You ONLY handle payment-method management: adding cards with add_payment_method and listing
saved methods with list_payment_methods. Extract the user_id from [userId:USER_ID] when present.

You do NOT handle checkout, product search, cart management or order placement. For those,
tell the user you will hand them back to the right specialist.

Never display full card numbers; always mask them. Today is {today}."""


def _render(template: str) -> str:
    return template.format(today=date.today().isoformat(), default_user=config.DEFAULT_USER_ID)


# ── Specialist executor ───────────────────────────────────────────────────────


class SpecialistAgent:
    """A role-prompted chat model with tools, guardrails and per-user threads."""

    def __init__(
        self,
        name: str,
        system_prompt: str,
        tools: Iterable[BaseTool],
        model,
        *,
        namespace: Optional[str] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        user_id: str = config.DEFAULT_USER_ID,
        max_iterations: int = config.SPECIALIST_MAX_ITERATIONS,
    ):
        self.name = name
        self.namespace = namespace or name
        self.system_prompt = system_prompt
        self.tools = list(tools)
        self.user_id = user_id
        self.max_iterations = max_iterations
        self._model = model.bind_tools(self.tools) if self.tools else model
        self._circuit_breaker = circuit_breaker or CircuitBreaker()
        self._tool_node = ToolNode(self.tools, handle_tool_errors=True) if self.tools else None
        self._checkpointer = MemorySaver()
        self._graph = self._build_graph()

    # ── Nodes ─────────────────────────────────────────────────────────────

    async def call_model(self, state: dict) -> dict:
        """Invoke the model on the thread history with the role prompt prepended."""
        messages = [SystemMessage(content=self.system_prompt)] + [
            m for m in state["messages"] if not isinstance(m, SystemMessage)
        ]
        response = await self._model.ainvoke(messages)
        return {
            "messages": [response],
            "iteration_count": state.get("iteration_count", 0) + 1,
        }

    async def guarded_tool_node(self, state: dict, config: Optional[dict] = None) -> dict:
        """Execute tool calls behind the per-user circuit breaker."""
        last_message = state["messages"][-1]
        tool_calls = getattr(last_message, "tool_calls", [])

        try:
            for tc in tool_calls:
                user_id = (tc.get("args") or {}).get("user_id") or self.user_id
                self._circuit_breaker.check(tc.get("name", "unknown"), user_id)
        except CircuitBreakerTripped as exc:
            logger.warning("[%s] %s", self.name, exc)
            error_messages = [
                ToolMessage(content=str(exc), tool_call_id=tc["id"]) for tc in tool_calls
            ]
            return {"messages": error_messages, "circuit_message": str(exc)}

        result = await self._tool_node.ainvoke(state, config)
        for tc in tool_calls:
            logger.info("[%s] tool %s args=%s", self.name, tc.get("name"), tc.get("args"))
        return result

    def circuit_open_node(self, state: dict) -> dict:
        return {"messages": [AIMessage(content=state["circuit_message"])]}

    def limit_reached_node(self, state: dict) -> dict:
        return {
            "messages": [
                AIMessage(
                    content=(
                        f"⚠️ {self.name} stopped after {self.max_iterations} steps "
                        "without finishing. Please try again."
                    )
                )
            ]
        }

    # ── Edges ─────────────────────────────────────────────────────────────

    def _should_continue(self, state: dict) -> str:
        last_message = state["messages"][-1]

        # 1. No tool calls → done
        if not getattr(last_message, "tool_calls", None) or self._tool_node is None:
            return END

        # 2. Iteration limit
        if state.get("iteration_count", 0) >= self.max_iterations:
            return "limit_reached"

        return "tools"

    def _after_tools(self, state: dict) -> str:
        if state.get("circuit_message"):
            return "circuit_open"
        return "agent"

    def _build_graph(self):
        workflow = StateGraph(SpecialistState)

        workflow.add_node("agent", self.call_model)
        workflow.add_node("tools", self.guarded_tool_node)
        workflow.add_node("circuit_open", self.circuit_open_node)
        workflow.add_node("limit_reached", self.limit_reached_node)

        workflow.set_entry_point("agent")
        workflow.add_conditional_edges(
            "agent",
            self._should_continue,
            {"tools": "tools", "limit_reached": "limit_reached", END: END},
        )
        workflow.add_conditional_edges(
            "tools",
            self._after_tools,
            {"agent": "agent", "circuit_open": "circuit_open"},
        )
        workflow.add_edge("circuit_open", END)
        workflow.add_edge("limit_reached", END)

        return workflow.compile(checkpointer=self._checkpointer)

    # ── Public API ────────────────────────────────────────────────────────

    def thread_id(self, session_id: Optional[str] = None) -> str:
        return f"{self.namespace}-{self.user_id}-{session_id or 'default'}"

    def _config(self, session_id: Optional[str]) -> dict:
        return {"configurable": {"thread_id": self.thread_id(session_id)}}

    @staticmethod
    def _turn_input(payload) -> dict:
        if isinstance(payload, dict):
            raw = payload.get("messages") or []
        else:
            raw = [payload]
        messages = [HumanMessage(content=m) if isinstance(m, str) else m for m in raw]
        return {"messages": messages, "iteration_count": 0, "circuit_message": None}

    async def ainvoke(self, payload, session_id: Optional[str] = None) -> dict:
        """Run one request and return ``{"messages", "content"}``.

        *payload* is either the request text or ``{"messages": [...]}``.
        """
        result = await self._graph.ainvoke(self._turn_input(payload), config=self._config(session_id))
        messages = result.get("messages", [])
        content = message_text(messages[-1]) if messages else ""
        return {"messages": messages, "content": content}

    async def chat(self, text: str, session_id: Optional[str] = None) -> str:
        """Send a message and return the final reply text."""
        return (await self.ainvoke(text, session_id))["content"]

    async def stream(self, text: str, session_id: Optional[str] = None):
        """Yield ``(node, messages)`` pairs as the loop advances."""
        async for update in self._graph.astream(
            self._turn_input(text), config=self._config(session_id), stream_mode="updates"
        ):
            for node, fragment in update.items():
                yield node, list((fragment or {}).get("messages", []))

    async def get_history(self, session_id: Optional[str] = None) -> list:
        snapshot = await self._graph.aget_state(self._config(session_id))
        return list(snapshot.values.get("messages", [])) if snapshot and snapshot.values else []

    async def clear_session(self, session_id: Optional[str] = None) -> None:
        await self._checkpointer.adelete_thread(self.thread_id(session_id))


def build_specialists(
    model,
    circuit_breaker: Optional[CircuitBreaker] = None,
    user_id: str = config.DEFAULT_USER_ID,
) -> dict[str, SpecialistAgent]:
    """Build the four tool-using specialists sharing one circuit breaker."""
    breaker = circuit_breaker or CircuitBreaker()
    specs = {
        "catalog": (CATALOG_PROMPT, ["browse_catalog"]),
        "deals": (DEALS_PROMPT, ["check_product_deals", "confirm_deal_usage"]),
        "cart_and_checkout": (CART_PROMPT, ["add_to_cart", "get_cart", "checkout_cart"]),
        "payment": (PAYMENT_PROMPT, ["add_payment_method", "list_payment_methods"]),
    }
    return {
        name: SpecialistAgent(
            name,
            _render(prompt),
            get_tools(tool_names),
            model,
            namespace=f"{name}-agent",
            circuit_breaker=breaker,
            user_id=user_id,
        )
        for name, (prompt, tool_names) in specs.items()
    }
