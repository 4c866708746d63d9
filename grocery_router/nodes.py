"""Specialist adapter nodes.

Each adapter builds a compact context for its specialist, invokes it, reads
the reply for workflow signals and returns a state fragment. Adapters only
ever hand back to the supervisor or end the turn; they never route to
another specialist directly.
"""

import json
import logging
from typing import Optional

from langgraph.graph import END

from grocery_router import config
from grocery_router.cache import ResultCache
from grocery_router.extraction import ProductExtractor
from grocery_router.messages import (
    assistant_message,
    build_agent_context,
    create_progress_message,
    latest_user_text,
    message_text,
    now_ms,
    user_texts,
)
from grocery_router.parsing import normalize_product_name, safe_parse_json
from grocery_router.planner import planner_cache_prefix
from grocery_router.state import CHECKOUT_CONTEXTS, carry_identity

logger = logging.getLogger(__name__)

UNAVAILABLE_TEXT = "Sorry, the {agent} service is unavailable right now. Please try again in a moment."
BUDGET_APOLOGY = (
    "I apologize, but I couldn't finish that request within my step and time "
    "limits. Please try again, or break it into smaller steps."
)
PRODUCT_CLARIFICATION = (
    "I need to know which product you're interested in to check for deals. "
    "Could you please specify the product name? For example, 'Check deals on "
    "apples' or 'Add 8 apples to my cart'."
)
PRODUCT_NOT_FOUND = (
    'I couldn\'t find "{product}" in our catalog. Let me help you find the right '
    "product. You can try searching for similar items or browse our catalog."
)
CHECKOUT_JSON_INSTRUCTION = (
    "When completing checkout, return ONLY a JSON object with this shape "
    "(no additional text):\n"
    "{\n"
    '  "checkoutStatus": "success" | "failure",\n'
    '  "orderId": string | null,\n'
    '  "summary": string | null,\n'
    '  "items": Array<any> | null,\n'
    '  "total": number | null\n'
    "}"
)

NOTIFICATION_SENT = "Notification sent successfully! You should receive a push notification shortly."
NOTIFICATION_FAILED = "Failed to send notification. Your order was completed successfully though!"
NOTIFICATION_ERROR = (
    "There was an issue sending the notification, but your order was completed successfully!"
)
NOTIFICATION_MISSING = "No notification data to process."

_NO_DEALS_PHRASES = ("no current deals", "no deals available", "expired", "unfortunately, there are no")
_CONFIRMATION_PHRASES = ("would you like", "apply this deal", "interested in", "take advantage")
_NOT_RECOGNIZED_PHRASES = (
    "not recognizing the product", "not recognized", "product not found", "item not found",
)
_CHECKOUT_SUCCESS_PHRASES = ("checkout completed", "order confirmed", "payment successful", "order placed")
_CHECKOUT_REQUEST_PHRASES = ("checkout", "check out", "place order", "complete order", "purchase")


def _contains(text: str, phrases) -> bool:
    lower = text.lower()
    return any(phrase in lower for phrase in phrases)


def _user_tag(state: dict) -> str:
    return f"[userId:{state.get('userId') or config.DEFAULT_USER_ID}]"


def _invalidate_planner_cache(cache: ResultCache, state: dict) -> None:
    cache.invalidate_prefix(planner_cache_prefix(state.get("userId"), state.get("conversationId")))


async def _call_specialist(agent, name: str, payload: str) -> Optional[str]:
    """Invoke *agent*; None means it failed and the caller should apologize."""
    try:
        result = await agent.ainvoke({"messages": [payload]})
    except Exception:
        logger.exception("Specialist %s failed", name)
        return None
    content = result.get("content") if isinstance(result, dict) else None
    if not content and isinstance(result, dict) and result.get("messages"):
        content = message_text(result["messages"][-1])
    return content or ""


def _unavailable(state: dict, name: str) -> dict:
    return {
        **carry_identity(state),
        "messages": [assistant_message(UNAVAILABLE_TEXT.format(agent=name), agent=name)],
        "next": END,
    }


# ── Catalog & payment ─────────────────────────────────────────────────────────


def make_specialist_node(name: str, agent):
    """Adapter for specialists whose replies carry no workflow signals."""

    async def specialist_node(state: dict) -> dict:
        messages = state.get("messages") or []
        text = latest_user_text(messages)
        context = build_agent_context(messages, name, text)
        reply = await _call_specialist(agent, name, f"{_user_tag(state)}\n{context}")
        if reply is None:
            return _unavailable(state, name)
        return {
            **carry_identity(state),
            "messages": [assistant_message(reply, agent=name)],
            "next": END,
        }

    specialist_node.__name__ = f"{name}_node"
    return specialist_node


# ── Deals ─────────────────────────────────────────────────────────────────────


def make_deals_node(agent, extractor: ProductExtractor, cache: ResultCache):
    """Adapter for the deals specialist."""

    async def deals_node(state: dict) -> dict:
        messages = state.get("messages") or []
        text = latest_user_text(messages)
        workflow_context = state.get("workflowContext")
        plan = state.get("plannerRecommendation") or {}
        updates: dict = {}

        product = state.get("pendingProduct")
        if not product:
            for candidate in user_texts(messages, 2):
                product = await extractor.extract(candidate)
                if product:
                    updates["pendingProduct"] = product
                    break
        if not product:
            return {
                **carry_identity(state),
                "messages": [assistant_message(PRODUCT_CLARIFICATION, agent="deals")],
                "workflowContext": None,
                "pendingProduct": None,
                "next": END,
            }

        context = build_agent_context(messages, "deals", text)
        request = f"Check deals for {product.get('quantity') or 1} {product['product']}."
        reply = await _call_specialist(agent, "deals", f"{_user_tag(state)} {request}\n\n{context}")
        if reply is None:
            return _unavailable(state, "deals")

        history_entry = {"product": product["product"], "timestamp": now_ms()}
        fragment = {**carry_identity(state), **updates}
        reply_message = assistant_message(reply, agent="deals")

        if _contains(reply, _NO_DEALS_PHRASES):
            _invalidate_planner_cache(cache, state)
            return {
                **fragment,
                "messages": [reply_message],
                "workflowContext": None,
                "pendingProduct": None,
                "dealData": {
                    "applied": False,
                    "pending": False,
                    "type": "no_deals_found",
                    "response": reply,
                    "history": [{**history_entry, "type": "no_deals_found"}],
                },
                "next": END,
            }

        if _contains(reply, _CONFIRMATION_PHRASES):
            _invalidate_planner_cache(cache, state)
            if plan.get("autoApplyIntent") is True:
                return {
                    **fragment,
                    "messages": [
                        reply_message,
                        create_progress_message("🛒 Adding items to your cart...", step="handoff"),
                    ],
                    "workflowContext": "add_to_cart_with_deals",
                    "pendingProduct": product,
                    "dealData": {
                        "applied": True,
                        "pending": False,
                        "type": "product_deal",
                        "response": reply,
                        "originalIntent": text,
                        "history": [{**history_entry, "type": "auto_applied"}],
                    },
                    "next": "supervisor",
                }
            return {
                **fragment,
                "messages": [reply_message],
                "workflowContext": "awaiting_deal_confirmation",
                "pendingProduct": product,
                "dealData": {
                    "pending": True,
                    "type": "product_deal",
                    "response": reply,
                    "history": [{**history_entry, "type": "offered"}],
                },
                "next": END,
            }

        if workflow_context == "check_deals":
            _invalidate_planner_cache(cache, state)
            return {
                **fragment,
                "messages": [reply_message],
                "workflowContext": "add_to_cart_with_deals",
                "pendingProduct": product,
                "dealData": {
                    "applied": True,
                    "pending": False,
                    "type": "product_deal",
                    "response": reply,
                    "history": [{**history_entry, "type": "applied"}],
                },
                "next": "supervisor",
            }

        # Deals were only presented; keep the product for a follow-up add
        return {**fragment, "messages": [reply_message], "workflowContext": None, "next": END}

    return deals_node


# ── Cart & checkout ──────────────────────────────────────────────────────────


def is_checkout_turn(workflow_context: Optional[str], text: str) -> bool:
    if workflow_context in CHECKOUT_CONTEXTS:
        return True
    return workflow_context != "add_to_cart_with_deals" and _contains(text, _CHECKOUT_REQUEST_PHRASES)


def _cart_instruction(state: dict, text: str, checkout: bool) -> str:
    tag = _user_tag(state)
    workflow_context = state.get("workflowContext")
    product = state.get("pendingProduct")
    deal = state.get("dealData") or {}

    if workflow_context == "add_to_cart_with_deals" and product:
        quantity = product.get("quantity") or 1
        code = normalize_product_name(product["product"])
        if deal.get("applied") and deal.get("originalIntent"):
            instruction = (
                f'{tag} User requested "{deal["originalIntent"]}" and deals were found. '
                f'Please add {quantity} {product["product"]} to cart using productCode "{code}"'
            )
        else:
            instruction = (
                f'{tag} User confirmed: "{text}". Please add {quantity} {product["product"]} '
                f'to cart using productCode "{code}"'
            )
        if deal.get("applied"):
            instruction += f" with the {deal.get('type') or 'available'} deal applied."
        elif deal.get("pending"):
            instruction += f" and apply the {deal.get('type') or 'available'} deal that was offered."
        else:
            instruction += "."
        return instruction

    if checkout:
        cart = state.get("cartData")
        if cart:
            return f"{tag} User wants to checkout. Cart data: {json.dumps(cart, default=str)}. {text}"
        return f'{tag} User wants to checkout: "{text}". Please get the current cart and process checkout.'

    return f"{tag} {text}"


def _checkout_success(state: dict, summary: str, order_id, items, total) -> dict:
    return {
        "notificationData": {
            "userId": state.get("userId"),
            "conversationId": state.get("conversationId"),
            "summary": summary,
            "items": items if items is not None else state.get("cartData"),
            "orderId": order_id,
            "total": total,
            "timestamp": now_ms(),
        },
        "cartData": None,
        "pendingProduct": None,
        "workflowContext": "send_notification",
        "next": "supervisor",
    }


def make_cart_node(agent, cache: ResultCache):
    """Adapter for the cart & checkout specialist."""

    async def cart_and_checkout_node(state: dict) -> dict:
        messages = state.get("messages") or []
        text = latest_user_text(messages)
        workflow_context = state.get("workflowContext")
        product = state.get("pendingProduct")
        checkout = is_checkout_turn(workflow_context, text)

        context_messages = messages
        if workflow_context == "add_to_cart_with_deals" and product:
            # Earlier "add <product>" lines would make the specialist add twice
            name = product["product"].lower()
            context_messages = [
                m for m in messages
                if m.get("role") != "user"
                or not ("add" in message_text(m).lower() and name in message_text(m).lower())
            ]
        context = build_agent_context(context_messages, "cart_and_checkout", text)
        payload = f"{context}\n\n{_cart_instruction(state, text, checkout)}"
        if checkout:
            payload += "\n\n" + CHECKOUT_JSON_INSTRUCTION

        reply = await _call_specialist(agent, "cart_and_checkout", payload)
        if reply is None:
            return _unavailable(state, "cart_and_checkout")

        fragment = carry_identity(state)

        if _contains(reply, _NOT_RECOGNIZED_PHRASES):
            label = (product or {}).get("product") or "that product"
            return {
                **fragment,
                "messages": [
                    assistant_message(reply, agent="cart_and_checkout"),
                    assistant_message(PRODUCT_NOT_FOUND.format(product=label), agent="cart_and_checkout"),
                ],
                "workflowContext": None,
                "dealData": None,
                "pendingProduct": None,
                "next": END,
            }

        structured = safe_parse_json(reply)
        status = (structured or {}).get("checkoutStatus")
        if status == "success":
            summary = structured.get("summary") or reply
            _invalidate_planner_cache(cache, state)
            logger.info("Checkout succeeded with order %s", structured.get("orderId"))
            return {
                **fragment,
                **_checkout_success(
                    state, summary, structured.get("orderId"), structured.get("items"), structured.get("total")
                ),
                "messages": [assistant_message(summary, agent="cart_and_checkout")],
            }
        if status == "failure":
            failure = f"Checkout failed: {structured.get('summary') or 'Unknown reason'}"
            return {
                **fragment,
                "messages": [assistant_message(failure, agent="cart_and_checkout")],
                "workflowContext": None,
                "pendingProduct": None,
                "next": END,
            }

        if _contains(reply, _CHECKOUT_SUCCESS_PHRASES):
            _invalidate_planner_cache(cache, state)
            return {
                **fragment,
                **_checkout_success(state, reply, None, None, None),
                "messages": [assistant_message(reply, agent="cart_and_checkout")],
            }

        reply_message = assistant_message(reply, agent="cart_and_checkout")
        deal = state.get("dealData") or {}
        if deal.get("includesCheckout") and workflow_context == "add_to_cart_with_deals" and not checkout:
            _invalidate_planner_cache(cache, state)
            return {
                **fragment,
                "messages": [
                    reply_message,
                    create_progress_message("💳 Proceeding to checkout automatically...", step="handoff"),
                ],
                "workflowContext": "add_to_cart_with_checkout",
                "dealData": {"includesCheckout": False},
                "pendingProduct": None,
                "next": "supervisor",
            }

        result = {**fragment, "messages": [reply_message], "next": END}
        if structured and structured.get("items") is not None:
            result["cartData"] = {k: structured[k] for k in ("items", "total") if k in structured}
        if workflow_context == "add_to_cart_with_deals":
            result["workflowContext"] = None
            result["pendingProduct"] = None
        elif checkout:
            result["workflowContext"] = None
        return result

    return cart_and_checkout_node


# ── Notification ──────────────────────────────────────────────────────────────


def notification_payload(data: dict) -> dict:
    order_id = data.get("orderId")
    payload = {
        "user": data.get("userId"),
        "message": data.get("summary") or "Order completed",
        "title": "Grocery Order Update",
        "timestamp": data.get("timestamp") or now_ms(),
    }
    if order_id:
        payload["url"] = config.ORDER_URL_TEMPLATE.format(order_id=order_id)
        payload["url_title"] = "View Order"
    return payload


def make_notification_node(notifier):
    """Post-checkout notification; every outcome ends the turn."""

    async def notification_node(state: dict) -> dict:
        data = state.get("notificationData")
        if not data:
            logger.warning("Notification node reached without notification data")
            text = NOTIFICATION_MISSING
        else:
            try:
                result = await notifier.send(notification_payload(data))
            except Exception:
                logger.exception("Notification delivery raised")
                text = NOTIFICATION_ERROR
            else:
                delivered = bool(result and result.get("ok")) and (
                    (result.get("result") or {}).get("status") == 1
                )
                if not delivered:
                    logger.warning("Notification delivery failed: %s", result)
                text = NOTIFICATION_SENT if delivered else NOTIFICATION_FAILED

        return {
            **carry_identity(state),
            "messages": [assistant_message(text, agent="notification_agent")],
            "notificationData": None,
            "workflowContext": None,
            "next": END,
        }

    return notification_node


# ── Sentinel nodes ────────────────────────────────────────────────────────────


def limit_reached_node(state: dict) -> dict:
    """Emit the apology when the delegation budget is spent."""
    return {
        **carry_identity(state),
        "messages": [assistant_message(BUDGET_APOLOGY, agent="supervisor")],
        "workflowContext": None,
        "next": END,
    }
