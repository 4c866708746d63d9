"""Deal tools: weekly promotions and deal confirmation.

The deal table is static for the current week; matching is done on the
normalized product name so "Organic Bananas" finds the bananas deal.
"""

from typing import Optional

from langchain_core.tools import tool

from grocery_router.parsing import normalize_product_name
from shop_tools._responses import ok

CURRENT_WEEK_DEALS = {
    "banana": {
        "dealType": "percentage_discount",
        "discount": 20,
        "originalPrice": 1.29,
        "dealPrice": 1.03,
        "description": "Save 20% on fresh bananas this week!",
        "validUntil": "2025-10-31",
        "dealId": "BANANA_OCT_2025",
    },
    "milk": {
        "dealType": "buy_one_get_discount",
        "discount": 50,
        "originalPrice": 3.99,
        "dealPrice": 3.99,
        "description": "Buy 2 gallons of milk, get 50% off the second one!",
        "validUntil": "2025-10-31",
        "dealId": "MILK_BOGO_OCT_2025",
        "minQuantity": 2,
    },
    "apple": {
        "dealType": "fixed_discount",
        "discount": 1.00,
        "originalPrice": 2.99,
        "dealPrice": 1.99,
        "description": "$1 off per bag of fresh apples!",
        "validUntil": "2025-10-31",
        "dealId": "APPLE_DOLLAR_OFF_2025",
    },
    "bread": {
        "dealType": "percentage_discount",
        "discount": 15,
        "originalPrice": 2.49,
        "dealPrice": 2.12,
        "description": "15% off artisan bread this week!",
        "validUntil": "2025-10-31",
        "dealId": "BREAD_15_OFF_2025",
    },
}

_CONFIRM_WORDS = ("yes", "confirm", "apply", "use", "ok", "sure")
_DECLINE_WORDS = ("no", "decline", "skip", "without")


def find_deal(product_name: str) -> Optional[dict]:
    normalized = normalize_product_name(product_name)
    if not normalized:
        return None
    for product, deal in CURRENT_WEEK_DEALS.items():
        if product in normalized or normalized in product:
            return {"product": product, **deal}
    return None


def compute_savings(deal: dict, quantity: Optional[float]) -> tuple[float, bool]:
    """Return ``(potential_savings, deal_applies)`` for *quantity* units.

    A buy-N deal does not apply below its minimum quantity; with no quantity
    given it is assumed it could.
    """
    units = quantity or 1
    if deal["dealType"] == "percentage_discount":
        return round(deal["originalPrice"] * deal["discount"] / 100 * units, 2), True
    if deal["dealType"] == "fixed_discount":
        return round(deal["discount"] * units, 2), True
    if deal["dealType"] == "buy_one_get_discount":
        minimum = deal.get("minQuantity", 2)
        if quantity and quantity >= minimum:
            discounted = int(quantity // minimum)
            return round(deal["originalPrice"] * deal["discount"] / 100 * discounted, 2), True
        return 0.0, not quantity
    return 0.0, False


@tool
def check_product_deals(product_name: str, quantity: Optional[float] = None) -> str:
    """Check whether a product has an active deal this week.

    Args:
        product_name: The product to look up, e.g. "apples".
        quantity: Optional quantity the user wants, used to compute savings.
    """
    deal = find_deal(product_name)
    if deal is None:
        return ok(hasDeal=False, message=f"No deals found for {product_name} this week.")

    savings, applies = compute_savings(deal, quantity)
    return ok(
        hasDeal=True,
        deal={
            **deal,
            "potentialSavings": f"{savings:.2f}",
            "dealApplies": applies,
            "quantityChecked": quantity,
        },
    )


@tool
def confirm_deal_usage(deal_id: str, product_name: str, quantity: float, user_response: str) -> str:
    """Record whether the user wants a specific deal applied to their purchase.

    Args:
        deal_id: The deal identifier returned by check_product_deals.
        product_name: The product the deal is for.
        quantity: The quantity the user wants to buy.
        user_response: The user's reply to the deal offer (yes/no/...).
    """
    reply = user_response.lower().strip()
    if any(word in reply for word in _CONFIRM_WORDS):
        return ok(
            dealConfirmed=True,
            dealId=deal_id,
            productName=product_name,
            quantity=quantity,
            action="apply_deal",
            message=f"Great! The deal has been applied to your {product_name}.",
        )
    if any(word in reply for word in _DECLINE_WORDS):
        return ok(
            dealConfirmed=False,
            dealId=deal_id,
            productName=product_name,
            quantity=quantity,
            action="skip_deal",
            message=f"No problem! Adding {product_name} to cart without the deal.",
        )
    return ok(
        dealConfirmed=None,
        action="clarify_response",
        message=(
            f"Would you like to apply the deal to your {product_name}? "
            "Please respond with 'yes' to apply it or 'no' to skip it."
        ),
    )
