"""Data model shared by the gateway, tree builder and dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mcp import types

from .errors import InvalidArguments

U32_MAX = 2**32 - 1

ACCESSIBLE_ROLES = (
    "unknown",
    "button",
    "checkbox",
    "combobox",
    "list",
    "slider",
    "spinbox",
    "tab",
    "tab-list",
    "text",
    "table",
    "tree",
    "progress-indicator",
    "text-input",
    "switch",
    "list-item",
    "tab-panel",
    "groupbox",
    "image",
    "radio-button",
)


def _u32(value: Any) -> bool:
    # bool is an int subclass; {"index": true} is not a handle
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= U32_MAX
    )


@dataclass(frozen=True)
class Handle:
    """Opaque ``(index, generation)`` reference to a remote window or element.

    Equality compares both fields. Validity is never judged locally: a handle
    with an outdated generation is sent as-is and the remote peer rejects it.
    """

    index: int
    generation: int

    @classmethod
    def from_arg(cls, value: Any, name: str = "handle") -> Handle:
        """Parse a handle from tool arguments, raising InvalidArguments."""
        if not isinstance(value, dict):
            raise InvalidArguments(
                f"{name} must be an object with 'index' and 'generation'"
            )
        for key in ("index", "generation"):
            if key not in value:
                raise InvalidArguments(f"{name} missing {key}")
            if not _u32(value[key]):
                raise InvalidArguments(
                    f"{name}.{key} must be a non-negative 32-bit integer"
                )
        return cls(index=value["index"], generation=value["generation"])

    def to_dict(self) -> dict[str, int]:
        return {"index": self.index, "generation": self.generation}

    def __str__(self) -> str:
        return f"{{index: {self.index}, generation: {self.generation}}}"


@dataclass
class WindowInfo:
    """Properties of a remote window."""

    handle: Handle
    width: float
    height: float
    x: float = 0
    y: float = 0
    fullscreen: bool = False
    maximized: bool = False
    minimized: bool = False
    root_element_handle: Handle | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": {"width": self.width, "height": self.height},
            "position": {"x": self.x, "y": self.y},
            "state": {
                "fullscreen": self.fullscreen,
                "maximized": self.maximized,
                "minimized": self.minimized,
            },
            "root_element_handle": (
                self.root_element_handle.to_dict()
                if self.root_element_handle
                else None
            ),
        }


@dataclass
class ElementProperties:
    """Properties of a single remote element, without children."""

    type_info: list[dict[str, str]] = field(default_factory=list)
    accessible_role: str = "unknown"
    geometry: dict[str, float] | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type_info": self.type_info,
            "accessible_role": self.accessible_role,
            "properties": self.properties,
            "geometry": self.geometry,
        }


@dataclass
class ElementNode:
    """An element together with its children, up to the requested depth."""

    handle: Handle
    props: ElementProperties
    children: list[ElementNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"handle": self.handle.to_dict()}
        data.update(self.props.to_dict())
        data["children"] = [child.to_dict() for child in self.children]
        return data

    def depth(self) -> int:
        """Number of levels below this node that carry children."""
        if not self.children:
            return 0
        return 1 + max(child.depth() for child in self.children)


@dataclass
class ToolResult:
    """Client-facing outcome of one tool call."""

    content: list[types.TextContent | types.ImageContent]
    is_error: bool = False

    def to_call_tool_result(self) -> types.CallToolResult:
        return types.CallToolResult(content=list(self.content), isError=self.is_error)
