"""
Catalogue of the image tools offered to the model.

The process-wide catalogue comes from get_registry(); tests and callers
that need a different tool set build their own ToolRegistry.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional

from design_grounding.core.exceptions import ToolNotFoundError
from design_grounding.tools.base import ImageTool


class ToolRegistry:
    """
    Image tools by name, in registration order.

    The order is the order of the function schemas sent to the model, so
    the same catalogue always yields the same prompt.
    """

    def __init__(self, tools: Optional[Iterable[ImageTool]] = None):
        self._tools: Dict[str, ImageTool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: ImageTool) -> None:
        """
        Raises:
            ValueError: If a tool with the same name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ImageTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' not found in registry", details={"tool": name})
        return tool

    def get_optional(self, name: str) -> Optional[ImageTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[str]:
        return list(self._tools)

    def get_openai_schemas(self, tool_names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """
        Function-calling schemas for the model.

        Args:
            tool_names: Tools to include, in this order. Unknown names are
                skipped. None means the whole catalogue.
        """
        names = self.list_tools() if tool_names is None else tool_names
        return [self._tools[name].get_openai_schema() for name in names if name in self._tools]

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ImageTool]:
        return iter(list(self._tools.values()))


_registry: Optional[ToolRegistry] = None


def get_registry() -> ToolRegistry:
    """The process-wide catalogue, built from the built-in tools on first use."""
    global _registry
    if _registry is None:
        from design_grounding.tools.image_tools import build_image_tools

        _registry = ToolRegistry(build_image_tools())
    return _registry


def reset_registry() -> None:
    """Drop the process-wide catalogue; the next get_registry() rebuilds it."""
    global _registry
    _registry = None
