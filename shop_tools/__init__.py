"""Shop tool auto-registration.

Discovers every `@tool`-decorated function in sibling modules. To add a new
tool, create a module in this package with functions decorated with
`@langchain_core.tools.tool`; modules starting with ``_`` are skipped.
"""

import importlib
import pkgutil
from typing import Iterable, Optional

from langchain_core.tools import BaseTool


def get_all_tools() -> list[BaseTool]:
    """Scan the package and return all registered tool instances."""
    tool_list: list[BaseTool] = []

    package_path = __path__  # type: ignore[name-defined]
    for _, module_name, _ in pkgutil.iter_modules(package_path):
        if module_name.startswith("_"):
            continue
        module = importlib.import_module(f"{__name__}.{module_name}")
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if isinstance(attr, BaseTool):
                tool_list.append(attr)

    return tool_list


def get_tools(names: Optional[Iterable[str]] = None) -> list[BaseTool]:
    """Return the tools called *names*, in that order (all tools when None)."""
    tools = get_all_tools()
    if names is None:
        return tools
    by_name = {t.name: t for t in tools}
    missing = [n for n in names if n not in by_name]
    if missing:
        raise KeyError(f"Unknown shop tools: {', '.join(missing)}")
    return [by_name[n] for n in names]
