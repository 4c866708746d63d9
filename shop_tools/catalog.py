"""Catalog tool: product discovery at regular catalog prices."""

from typing import Optional

from langchain_core.tools import tool

from shop_tools._responses import error, ok
from shop_tools.client import ShopAPIError, get_shop_client

_MAX_LIMIT = 20


@tool
async def browse_catalog(
    search: Optional[str] = None,
    category: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> str:
    """Browse and search the grocery product catalog.

    Use this tool to help users discover products before adding them to
    the cart. Prices are regular catalog prices (never deal prices).

    Args:
        search: Search term matched against product names and categories.
        category: Restrict results to one category, e.g. "Produce", "Dairy".
        limit: Number of products to return (default 10, max 20).
        offset: Number of products to skip, for pagination.
    """
    if limit is not None:
        limit = max(1, min(_MAX_LIMIT, limit))
    try:
        data = await get_shop_client().get(
            "/catalog",
            params={"search": search, "category": category, "limit": limit, "offset": offset},
        )
    except ShopAPIError as exc:
        return error(f"Failed to browse catalog: {exc}")

    products = [
        {
            "id": p.get("id"),
            "name": p.get("name"),
            "price": f"${p.get('price')}",
            "category": p.get("category"),
            "inStock": p.get("inStock"),
            "description": p.get("description"),
        }
        for p in data.get("products") or []
    ]
    summary = f"Found {len(products)} products"
    if search:
        summary += f' matching "{search}"'
    if category:
        summary += f" in {category} category"
    return ok(
        message=summary + ".",
        products=products,
        totalProducts=(data.get("pagination") or {}).get("total", len(products)),
    )
