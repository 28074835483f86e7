"""Tool-call dispatch: argument validation, routing and result shaping."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

from mcp import types

from .client import (
    ACCESSIBILITY_ACTIONS,
    CLICK_BUTTONS,
    QUERY_INSTRUCTIONS,
    IntrospectionClient,
)
from .errors import BridgeError, InvalidArguments
from .models import ACCESSIBLE_ROLES, Handle, ToolResult
from .screenshot import ScreenshotEncoder
from .tree import DEFAULT_MAX_DEPTH, MAX_TREE_DEPTH, TreeBuilder

logger = logging.getLogger(__name__)

Content = list[types.TextContent | types.ImageContent]

KEY_MODIFIERS = ("shift", "control", "alt", "meta")

# Named keys and the key text the remote expects for them.
NAMED_KEYS = {
    "Backspace": "\u0008",
    "Tab": "\t",
    "Return": "\n",
    "Enter": "\n",
    "Escape": "\u001b",
    "Delete": "\u007f",
    "Space": " ",
    "UpArrow": "\uf700",
    "DownArrow": "\uf701",
    "LeftArrow": "\uf702",
    "RightArrow": "\uf703",
    "Home": "\uf729",
    "End": "\uf72b",
    "PageUp": "\uf72c",
    "PageDown": "\uf72d",
}


# =============================================================================
# Argument validation
# =============================================================================


def _handle_arg(arguments: dict[str, Any], name: str) -> Handle:
    if name not in arguments:
        raise InvalidArguments(f"missing {name}")
    return Handle.from_arg(arguments[name], name)


def _str_arg(arguments: dict[str, Any], name: str, *aliases: str) -> str:
    for key in (name, *aliases):
        if key in arguments:
            value = arguments[key]
            if not isinstance(value, str):
                raise InvalidArguments(f"{name} must be a string")
            return value
    raise InvalidArguments(f"missing {name}")


def _bool_arg(
    arguments: dict[str, Any], name: str, default: bool | None = None
) -> bool:
    if name not in arguments:
        if default is None:
            raise InvalidArguments(f"missing {name}")
        return default
    value = arguments[name]
    if not isinstance(value, bool):
        raise InvalidArguments(f"{name} must be a boolean")
    return value


def _choice_arg(
    arguments: dict[str, Any],
    name: str,
    choices: tuple[str, ...],
    default: str | None = None,
) -> str:
    if name not in arguments and default is not None:
        return default
    value = _str_arg(arguments, name)
    if value not in choices:
        raise InvalidArguments(
            f"Unknown {name} {value!r}, expected one of: {', '.join(choices)}"
        )
    return value


def _depth_arg(arguments: dict[str, Any]) -> int:
    value = arguments.get("max_depth", DEFAULT_MAX_DEPTH)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidArguments("max_depth must be a non-negative integer")
    return min(value, MAX_TREE_DEPTH)


def _query_arg(arguments: dict[str, Any]) -> list[dict[str, Any]]:
    """Validate a descendants query.

    Each instruction must carry exactly one of QUERY_INSTRUCTIONS. Without a
    filter the query matches every descendant.
    """
    raw = arguments.get("filter", arguments.get("query"))
    if raw is None:
        return [{"match_descendants": True}]
    if not isinstance(raw, list):
        raise InvalidArguments("filter must be an array of query instructions")

    query: list[dict[str, Any]] = []
    for i, instruction in enumerate(raw):
        if not isinstance(instruction, dict):
            raise InvalidArguments(f"filter[{i}] must be an object")
        keys = [k for k in instruction if k in QUERY_INSTRUCTIONS]
        if len(keys) != 1 or len(instruction) != 1:
            raise InvalidArguments(
                f"filter[{i}] must have exactly one of: {', '.join(QUERY_INSTRUCTIONS)}"
            )
        key = keys[0]
        value = instruction[key]
        if key == "match_descendants":
            if value is not True:
                raise InvalidArguments(f"filter[{i}].match_descendants must be true")
        elif not isinstance(value, str) or not value:
            raise InvalidArguments(f"filter[{i}].{key} must be a non-empty string")
        elif key == "match_accessible_role" and value not in ACCESSIBLE_ROLES:
            raise InvalidArguments(f"Unknown accessible role: {value}")
        query.append({key: value})
    return query


def _modifiers_arg(arguments: dict[str, Any]) -> list[str]:
    value = arguments.get("modifiers", [])
    if not isinstance(value, list) or not all(isinstance(m, str) for m in value):
        raise InvalidArguments("modifiers must be an array of strings")
    for modifier in value:
        if modifier not in KEY_MODIFIERS:
            raise InvalidArguments(
                f"Unknown modifier {modifier!r}, expected one of: {', '.join(KEY_MODIFIERS)}"
            )
    return value


def _key_arg(arguments: dict[str, Any]) -> str:
    key = _str_arg(arguments, "key")
    if key in NAMED_KEYS:
        return NAMED_KEYS[key]
    if not key:
        raise InvalidArguments("key must not be empty")
    return key


# =============================================================================
# Result shaping
# =============================================================================


def _json_content(data: dict[str, Any]) -> Content:
    return [types.TextContent(type="text", text=json.dumps(data, indent=2))]


def _ok() -> Content:
    return _json_content({"ok": True})


# =============================================================================
# Dispatcher
# =============================================================================


class ToolDispatcher:
    """Maps tool invocations onto gateway calls.

    Arguments are validated before anything is sent to the application, so
    a malformed call never touches the connection. Every call produces
    exactly one ToolResult; failures become ``isError`` results.
    """

    def __init__(self, client: IntrospectionClient) -> None:
        self.client = client
        self.screenshots = ScreenshotEncoder(client)
        self._tools: dict[str, Callable[[dict[str, Any]], Awaitable[Content]]] = {
            "list_windows": self.list_windows,
            "get_window_properties": self.get_window_properties,
            "find_elements_by_id": self.find_elements_by_id,
            "get_element_properties": self.get_element_properties,
            "query_element_descendants": self.query_element_descendants,
            "get_element_tree": self.get_element_tree,
            "take_screenshot": self.take_screenshot,
            "click_element": self.click_element,
            "invoke_accessibility_action": self.invoke_accessibility_action,
            "set_element_value": self.set_element_value,
            "dispatch_key_event": self.dispatch_key_event,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def call(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Run one tool call to completion."""
        try:
            handler = self._tools.get(name)
            if handler is None:
                raise InvalidArguments(f"Unknown tool: {name}")
            if arguments is None:
                arguments = {}
            if not isinstance(arguments, dict):
                raise InvalidArguments("arguments must be an object")
            return ToolResult(content=await handler(arguments))
        except BridgeError as e:
            logger.warning("Tool %s failed: %s", name, e.describe())
            return ToolResult(
                content=[types.TextContent(type="text", text=e.describe())],
                is_error=True,
            )
        except Exception as e:
            logger.exception(f"Error calling tool {name}")
            return ToolResult(
                content=[types.TextContent(type="text", text=f"Error: {str(e)}")],
                is_error=True,
            )

    # -------------------------------------------------------------------------
    # Windows
    # -------------------------------------------------------------------------

    async def list_windows(self, arguments: dict[str, Any]) -> Content:
        windows = await self.client.list_windows()
        return _json_content({"windows": [w.to_dict() for w in windows]})

    async def get_window_properties(self, arguments: dict[str, Any]) -> Content:
        window = _handle_arg(arguments, "window_handle")
        info = await self.client.window_properties(window)
        return _json_content(info.to_dict())

    async def find_elements_by_id(self, arguments: dict[str, Any]) -> Content:
        window = _handle_arg(arguments, "window_handle")
        qualified_id = _str_arg(arguments, "qualified_id", "element_id")
        matches = await self.client.find_elements(window, qualified_id)
        return _json_content({"matches": [m.to_dict() for m in matches]})

    async def take_screenshot(self, arguments: dict[str, Any]) -> Content:
        window = _handle_arg(arguments, "window_handle")
        return await self.screenshots.capture(window)

    # -------------------------------------------------------------------------
    # Elements
    # -------------------------------------------------------------------------

    async def get_element_properties(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        props = await self.client.element_properties(element)
        return _json_content(props.to_dict())

    async def query_element_descendants(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        query = _query_arg(arguments)
        find_all = _bool_arg(arguments, "find_all", default=True)
        matches = await self.client.element_descendants(element, query, find_all)
        return _json_content({"matches": [m.to_dict() for m in matches]})

    async def get_element_tree(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        max_depth = _depth_arg(arguments)
        tree = await TreeBuilder(self.client).build(element, max_depth)
        return _json_content(tree.to_dict())

    # -------------------------------------------------------------------------
    # Input & actions
    # -------------------------------------------------------------------------

    async def click_element(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        button = _choice_arg(arguments, "button", CLICK_BUTTONS, default="left")
        double = _bool_arg(arguments, "double", default=False)
        await self.client.click(element, button, double)
        return _ok()

    async def invoke_accessibility_action(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        action = _choice_arg(arguments, "action", ACCESSIBILITY_ACTIONS)
        await self.client.invoke_action(element, action)
        return _ok()

    async def set_element_value(self, arguments: dict[str, Any]) -> Content:
        element = _handle_arg(arguments, "element_handle")
        value = _str_arg(arguments, "value")
        await self.client.set_value(element, value)
        return _ok()

    async def dispatch_key_event(self, arguments: dict[str, Any]) -> Content:
        window = _handle_arg(arguments, "window_handle")
        key = _key_arg(arguments)
        modifiers = _modifiers_arg(arguments)
        down = _bool_arg(arguments, "down")
        await self.client.dispatch_key(window, key, modifiers, down)
        return _ok()
