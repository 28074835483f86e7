"""Typed client for the remote introspection protocol."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, NoReturn

from .codec import decode_message, encode_message
from .connection import ConnectionManager
from .errors import BridgeError, InvalidHandle, ProtocolError, UnsupportedOperation
from .models import ElementProperties, Handle, WindowInfo

logger = logging.getLogger(__name__)

# Remote error codes and the error each one surfaces as.
ERROR_CODES: dict[str, type[BridgeError]] = {
    "invalid_handle": InvalidHandle,
    "unknown_target": InvalidHandle,
    "unsupported_operation": UnsupportedOperation,
}

CLICK_BUTTONS = ("left", "right", "middle")
ACCESSIBILITY_ACTIONS = ("default", "increment", "decrement", "expand")
QUERY_INSTRUCTIONS = (
    "match_descendants",
    "match_id",
    "match_type_name",
    "match_type_name_or_base",
    "match_accessible_role",
)

# Accessible string properties where the remote sends "" for "not set".
_OPTIONAL_TEXT_PROPERTIES = (
    "accessible_label",
    "accessible_value",
    "accessible_description",
    "accessible_placeholder_text",
)
_PLAIN_PROPERTIES = (
    "accessible_checked",
    "accessible_checkable",
    "accessible_enabled",
    "accessible_read_only",
    "accessible_value_minimum",
    "accessible_value_maximum",
    "accessible_value_step",
    "computed_opacity",
)


class IntrospectionClient:
    """One method per remote primitive.

    Each method issues exactly one round trip through the connection
    manager and never retries. Remote-reported failures are raised as
    InvalidHandle or UnsupportedOperation; anything the client cannot make
    sense of is a ProtocolError, after which the connection is dropped so
    the next call starts from a clean stream.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self.connection = connection

    async def _request(
        self, kind: str, payload: dict[str, Any], expect: str
    ) -> dict[str, Any]:
        """Issue one round trip and return the payload of the expected response.

        Args:
            kind: Request message kind (e.g. ``request_window_list``).
            payload: Request fields.
            expect: Response message kind that counts as success.
        """
        logger.debug("Request %s", kind)
        body = await self.connection.call(encode_message(kind, payload))
        try:
            response_kind, data = decode_message(body)
        except ProtocolError as e:
            self._protocol_error(str(e))

        if response_kind == "error":
            raise self._classify(data)
        if response_kind != expect:
            self._protocol_error(
                f"Unexpected response {response_kind!r} to {kind!r} (expected {expect!r})"
            )
        return data

    def _classify(self, error: dict[str, Any]) -> BridgeError:
        message = str(error.get("message") or "remote error")
        code = error.get("code")
        exc_type = ERROR_CODES.get(code) if isinstance(code, str) else None
        logger.debug("Remote error %r: %s", code, message)
        if exc_type is None:
            self.connection.reset(f"unknown remote error code {code!r}")
            return ProtocolError(f"Unknown remote error code {code!r}: {message}")
        return exc_type(message)

    def _protocol_error(self, message: str) -> NoReturn:
        self.connection.reset(message)
        raise ProtocolError(message)

    def _handle(self, value: Any, field_name: str) -> Handle:
        if not isinstance(value, dict):
            self._protocol_error(f"Malformed handle in {field_name!r}: {value!r}")
        index, generation = value.get("index"), value.get("generation")
        if not isinstance(index, int) or not isinstance(generation, int):
            self._protocol_error(f"Malformed handle in {field_name!r}: {value!r}")
        return Handle(index=index, generation=generation)

    def _handles(self, data: dict[str, Any], field_name: str) -> list[Handle]:
        values = data.get(field_name, [])
        if not isinstance(values, list):
            self._protocol_error(f"{field_name!r} must be a list")
        return [self._handle(v, field_name) for v in values]

    def _field(self, data: dict[str, Any], field_name: str, kind: type, default: Any) -> Any:
        """Get an optional structured field, rejecting values of the wrong shape."""
        value = data.get(field_name)
        if value is None:
            return default
        if not isinstance(value, kind):
            self._protocol_error(f"Malformed {field_name!r} in response: {value!r}")
        return value

    # -------------------------------------------------------------------------
    # Windows
    # -------------------------------------------------------------------------

    async def list_windows(self) -> list[Handle]:
        """List handles of all windows of the attached application."""
        data = await self._request("request_window_list", {}, "window_list")
        return self._handles(data, "window_handles")

    async def window_properties(self, window: Handle) -> WindowInfo:
        """Get size, position, state and root element of a window.

        Args:
            window: Window handle from list_windows.
        """
        data = await self._request(
            "request_window_properties",
            {"window_handle": window.to_dict()},
            "window_properties",
        )
        size = self._field(data, "size", dict, {})
        position = self._field(data, "position", dict, {})
        root = data.get("root_element_handle")
        return WindowInfo(
            handle=window,
            width=size.get("width", 0),
            height=size.get("height", 0),
            x=position.get("x", 0),
            y=position.get("y", 0),
            fullscreen=bool(data.get("is_fullscreen", False)),
            maximized=bool(data.get("is_maximized", False)),
            minimized=bool(data.get("is_minimized", False)),
            root_element_handle=(
                self._handle(root, "root_element_handle") if root is not None else None
            ),
        )

    async def find_elements(self, window: Handle, qualified_id: str) -> list[Handle]:
        """Find elements by qualified id.

        Args:
            window: Window to search in.
            qualified_id: Id qualified by its component (e.g. ``App::ok_button``).
        """
        data = await self._request(
            "request_find_elements_by_id",
            {"window_handle": window.to_dict(), "elements_id": qualified_id},
            "elements",
        )
        return self._handles(data, "element_handles")

    # -------------------------------------------------------------------------
    # Elements
    # -------------------------------------------------------------------------

    async def element_properties(self, element: Handle) -> ElementProperties:
        """Get type info, accessibility properties and geometry of one element."""
        data = await self._request(
            "request_element_properties",
            {"element_handle": element.to_dict()},
            "element_properties",
        )
        return self._element_properties(data)

    def _element_properties(self, data: dict[str, Any]) -> ElementProperties:
        type_info = []
        for t in self._field(data, "type_names_and_ids", list, []):
            if not isinstance(t, dict):
                self._protocol_error(f"Malformed 'type_names_and_ids' entry: {t!r}")
            type_info.append(
                {"type_name": str(t.get("type_name", "")), "id": str(t.get("id", ""))}
            )

        size = self._field(data, "size", dict, None)
        pos = self._field(data, "absolute_position", dict, None)
        geometry = None
        if size is not None or pos is not None:
            size = size or {}
            pos = pos or {}
            geometry = {
                "x": pos.get("x", 0),
                "y": pos.get("y", 0),
                "width": size.get("width", 0),
                "height": size.get("height", 0),
            }

        properties: dict[str, Any] = {}
        for name in _OPTIONAL_TEXT_PROPERTIES:
            properties[name] = data.get(name) or None
        for name in _PLAIN_PROPERTIES:
            properties[name] = data.get(name)

        return ElementProperties(
            type_info=type_info,
            accessible_role=str(data.get("accessible_role") or "unknown"),
            geometry=geometry,
            properties=properties,
        )

    async def element_children(self, element: Handle) -> list[Handle]:
        """Get the direct children of an element, in remote order.

        An empty instruction stack makes the descendants query match the
        element's immediate children.
        """
        return await self.element_descendants(element, [], find_all=True)

    async def element_descendants(
        self,
        element: Handle,
        query: list[dict[str, Any]],
        find_all: bool = True,
    ) -> list[Handle]:
        """Run a descendants query rooted at an element.

        Args:
            element: Element to start from.
            query: Instructions applied in order, each a single-key dict
                named after one of QUERY_INSTRUCTIONS.
            find_all: Return all matches instead of only the first.
        """
        stack = []
        for instruction in query:
            ((name, value),) = instruction.items()
            if name == "match_id":
                name = "match_element_id"
            elif name in ("match_type_name", "match_type_name_or_base", "match_accessible_role"):
                name = name.replace("match_", "match_element_", 1)
            stack.append({name: value})

        data = await self._request(
            "request_query_element_descendants",
            {
                "element_handle": element.to_dict(),
                "query_stack": stack,
                "find_all": find_all,
            },
            "element_query_response",
        )
        return self._handles(data, "element_handles")

    # -------------------------------------------------------------------------
    # Input & actions
    # -------------------------------------------------------------------------

    async def click(
        self, element: Handle, button: str = "left", double: bool = False
    ) -> None:
        """Simulate a mouse click on an element.

        Args:
            element: Element to click.
            button: One of CLICK_BUTTONS.
            double: Double click instead of single click.
        """
        await self._request(
            "request_element_click",
            {
                "element_handle": element.to_dict(),
                "action": "double_click" if double else "single_click",
                "button": button,
            },
            "element_click_response",
        )

    async def invoke_action(self, element: Handle, action: str) -> None:
        """Invoke an accessibility action (one of ACCESSIBILITY_ACTIONS)."""
        await self._request(
            "request_invoke_element_accessibility_action",
            {"element_handle": element.to_dict(), "action": action},
            "invoke_element_accessibility_action_response",
        )

    async def set_value(self, element: Handle, value: str) -> None:
        """Set the accessible value of an element."""
        await self._request(
            "request_set_element_accessible_value",
            {"element_handle": element.to_dict(), "value": value},
            "set_element_accessible_value_response",
        )

    async def dispatch_key(
        self,
        window: Handle,
        key: str,
        modifiers: list[str] | None = None,
        is_down: bool = True,
    ) -> None:
        """Dispatch one key press or release to a window.

        Args:
            window: Target window; the event goes to its focused element.
            key: Key text as the remote expects it.
            modifiers: Held modifier names.
            is_down: Press if True, release otherwise.
        """
        event_kind = "key_pressed" if is_down else "key_released"
        await self._request(
            "request_dispatch_window_event",
            {
                "window_handle": window.to_dict(),
                "event": {event_kind: {"text": key, "modifiers": modifiers or []}},
            },
            "dispatch_window_event_response",
        )

    async def screenshot(self, window: Handle) -> bytes:
        """Capture a window's contents as encoded image bytes (PNG by default)."""
        data = await self._request(
            "request_take_snapshot",
            {"window_handle": window.to_dict(), "image_mime_type": ""},
            "take_snapshot_response",
        )
        encoded = data.get("window_contents_as_encoded_image")
        if not isinstance(encoded, str):
            self._protocol_error("Snapshot response carries no image data")
        try:
            return base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            self._protocol_error(f"Snapshot image is not valid base64: {e}")
