"""JSON tool responses shared by every shop tool."""

import json
from typing import Any


def ok(**data: Any) -> str:
    return json.dumps({"success": True, **data}, default=str)


def error(message: str, **data: Any) -> str:
    return json.dumps({"success": False, "error": message, **data}, default=str)
