"""In-process fake application speaking the introspection protocol.

The fake attaches to a ConnectionManager like a real application would and
answers requests from a small element model:

    window 0 (root element 0, "App")
    ├── 1 LineEdit  App::name      text-input  value "abc"
    ├── 2 Text      App::preview   text        label mirrors App::name
    └── 3 Rectangle App::controls
        ├── 4 Button App::ok_button  button
        │   └── 6 Text App::ok_label  text  "OK"
        └── 5 Slider App::volume     slider  value "5"
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
from dataclasses import dataclass, field
from typing import Any

from PIL import Image

from ui_introspect_mcp.codec import LENGTH_PREFIX


@dataclass
class FakeElement:
    index: int
    type_names: list[str]
    element_id: str
    role: str = "unknown"
    label: str = ""
    value: str = ""
    generation: int = 0
    children: list[int] = field(default_factory=list)
    x: float = 0
    y: float = 0
    width: float = 100
    height: float = 30


def png_bytes(width: int = 64, height: int = 48) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


def build_elements() -> dict[int, FakeElement]:
    elements = [
        FakeElement(0, ["App", "Window"], "App::root", children=[1, 2, 3], width=640, height=480),
        FakeElement(1, ["LineEdit"], "App::name", role="text-input", value="abc"),
        FakeElement(2, ["Text"], "App::preview", role="text"),
        FakeElement(3, ["Rectangle"], "App::controls", children=[4, 5]),
        FakeElement(4, ["Button"], "App::ok_button", role="button", label="OK", children=[6]),
        FakeElement(5, ["Slider"], "App::volume", role="slider", value="5"),
        FakeElement(6, ["Text"], "App::ok_label", role="text", label="OK"),
    ]
    return {e.index: e for e in elements}


class FakeApp:
    """Fake application under test.

    Attributes:
        requests: Request kinds in arrival order.
        max_in_flight: Highest number of requests being handled at once.
        delay: Seconds to sleep before answering each request.
        hang: If True, never answer.
        overrides: Request kind -> raw response body to send instead.
    """

    def __init__(self) -> None:
        self.elements = build_elements()
        self.window_generation = 0
        self.focused = 1
        self.requests: list[str] = []
        self.payloads: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.delay = 0.0
        self.hang = False
        self.overrides: dict[str, bytes] = {}
        self.screenshot = png_bytes()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def attach(self, port: int, host: str = "127.0.0.1") -> None:
        self._reader, self._writer = await asyncio.open_connection(host, port)
        self._task = asyncio.create_task(self._serve())
        # let the bridge's accept callback run
        await asyncio.sleep(0.05)

    async def detach(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except ConnectionError:
                pass
        await asyncio.sleep(0.05)

    async def push(self, body: bytes) -> None:
        """Send a frame without being asked."""
        assert self._writer
        self._writer.write(LENGTH_PREFIX.pack(len(body)) + body)
        await self._writer.drain()
        await asyncio.sleep(0.05)

    async def _serve(self) -> None:
        # Requests are answered concurrently so that a bridge pipelining
        # requests would show up as max_in_flight > 1.
        assert self._reader
        answers: set[asyncio.Task[None]] = set()
        try:
            while True:
                try:
                    header = await self._reader.readexactly(LENGTH_PREFIX.size)
                    (length,) = LENGTH_PREFIX.unpack(header)
                    body = await self._reader.readexactly(length)
                except (asyncio.IncompleteReadError, ConnectionError):
                    return
                task = asyncio.create_task(self._answer(body))
                answers.add(task)
                task.add_done_callback(answers.discard)
        finally:
            for task in list(answers):
                task.cancel()

    async def _answer(self, body: bytes) -> None:
        assert self._writer
        response = await self._respond(body)
        if self._writer.is_closing():
            return
        self._writer.write(LENGTH_PREFIX.pack(len(response)) + response)
        try:
            await self._writer.drain()
        except ConnectionError:
            pass

    async def _respond(self, body: bytes) -> bytes:
        ((kind, payload),) = json.loads(body).items()
        self.requests.append(kind)
        self.payloads.append(payload)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.hang:
                await asyncio.sleep(3600)
            if kind in self.overrides:
                return self.overrides[kind]
            response = self.handle(kind, payload)
            return json.dumps(response).encode()
        finally:
            self.in_flight -= 1

    # -------------------------------------------------------------------------
    # Model
    # -------------------------------------------------------------------------

    def bump_generation(self, index: int) -> None:
        """Replace element ``index`` with a new object at the same index."""
        self.elements[index].generation += 1

    def _element(self, handle: dict[str, int]) -> FakeElement | None:
        element = self.elements.get(handle["index"])
        if element is None or element.generation != handle["generation"]:
            return None
        return element

    def _window_ok(self, handle: dict[str, int]) -> bool:
        return handle == {"index": 0, "generation": self.window_generation}

    @staticmethod
    def _error(code: str, message: str) -> dict[str, Any]:
        return {"error": {"code": code, "message": message}}

    def _handle(self, element: FakeElement) -> dict[str, int]:
        return {"index": element.index, "generation": element.generation}

    def _descendants(self, element: FakeElement) -> list[FakeElement]:
        result = []
        for child_index in element.children:
            child = self.elements[child_index]
            result.append(child)
            result.extend(self._descendants(child))
        return result

    def handle(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        if kind == "request_window_list":
            return {"window_list": {"window_handles": [{"index": 0, "generation": self.window_generation}]}}

        if kind in ("request_window_properties", "request_take_snapshot", "request_find_elements_by_id", "request_dispatch_window_event"):
            if not self._window_ok(payload["window_handle"]):
                return self._error("invalid_handle", "window handle is no longer valid")
            if kind == "request_window_properties":
                return {
                    "window_properties": {
                        "is_fullscreen": False,
                        "is_maximized": False,
                        "is_minimized": False,
                        "size": {"width": 640, "height": 480},
                        "position": {"x": 10, "y": 20},
                        "root_element_handle": self._handle(self.elements[0]),
                    }
                }
            if kind == "request_take_snapshot":
                return {"take_snapshot_response": {"window_contents_as_encoded_image": base64.b64encode(self.screenshot).decode()}}
            if kind == "request_find_elements_by_id":
                matches = [
                    self._handle(e) for e in self.elements.values() if e.element_id == payload["elements_id"]
                ]
                return {"elements": {"element_handles": matches}}
            return self._key_event(payload["event"])

        element = self._element(payload["element_handle"])
        if element is None:
            return self._error("invalid_handle", "element handle is no longer valid")

        if kind == "request_element_properties":
            label = element.label
            if element.element_id == "App::preview":
                label = self.elements[1].value
            return {
                "element_properties": {
                    "type_names_and_ids": [{"type_name": t, "id": element.element_id} for t in element.type_names],
                    "accessible_role": element.role,
                    "accessible_label": label,
                    "accessible_value": element.value,
                    "accessible_description": "",
                    "accessible_placeholder_text": "",
                    "accessible_checked": False,
                    "accessible_checkable": False,
                    "accessible_enabled": True,
                    "accessible_read_only": False,
                    "accessible_value_minimum": 0.0,
                    "accessible_value_maximum": 0.0,
                    "accessible_value_step": 0.0,
                    "size": {"width": element.width, "height": element.height},
                    "absolute_position": {"x": element.x, "y": element.y},
                    "computed_opacity": 1.0,
                }
            }

        if kind == "request_query_element_descendants":
            candidates = [self.elements[i] for i in element.children]
            for instruction in payload["query_stack"]:
                ((name, value),) = instruction.items()
                if name == "match_descendants":
                    candidates = self._descendants(element)
                elif name == "match_element_id":
                    candidates = [c for c in candidates if c.element_id == value]
                elif name == "match_element_type_name":
                    candidates = [c for c in candidates if c.type_names[0] == value]
                elif name == "match_element_type_name_or_base":
                    candidates = [c for c in candidates if value in c.type_names]
                elif name == "match_element_accessible_role":
                    candidates = [c for c in candidates if c.role == value]
            if not payload.get("find_all", True):
                candidates = candidates[:1]
            return {"element_query_response": {"element_handles": [self._handle(c) for c in candidates]}}

        if kind == "request_element_click":
            self.focused = element.index
            return {"element_click_response": {}}
        if kind == "request_invoke_element_accessibility_action":
            if element.role != "slider" and payload["action"] in ("increment", "decrement"):
                return self._error("unsupported_operation", "element has no value to step")
            if payload["action"] == "increment":
                element.value = str(int(element.value) + 1)
            elif payload["action"] == "decrement":
                element.value = str(int(element.value) - 1)
            return {"invoke_element_accessibility_action_response": {}}
        if kind == "request_set_element_accessible_value":
            element.value = payload["value"]
            return {"set_element_accessible_value_response": {}}

        return self._error("unsupported_operation", f"unknown request {kind}")

    def _key_event(self, event: dict[str, Any]) -> dict[str, Any]:
        ((event_kind, key),) = event.items()
        focused = self.elements[self.focused]
        if event_kind == "key_pressed" and focused.role == "text-input":
            text = key["text"]
            if text in ("\u0008", "\u007f"):
                focused.value = focused.value[:-1]
            elif len(text) == 1 and text.isprintable():
                focused.value += text
        return {"dispatch_window_event_response": {}}
