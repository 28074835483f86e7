"""MCP Server for UI introspection - lets AI inspect and drive a running UI application.

The application under test attaches to this server over TCP. This server
provides tools for:
- Listing windows and reading window properties
- Walking the element tree and reading element properties
- Finding elements by id or by descendant queries
- Clicking, invoking accessibility actions, setting values and sending keys
- Taking window screenshots
"""

from __future__ import annotations

import asyncio
import logging
import sys
from textwrap import dedent
from typing import Any

import click
from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from .client import ACCESSIBILITY_ACTIONS, CLICK_BUTTONS, IntrospectionClient
from .connection import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT, ConnectionManager
from .dispatcher import KEY_MODIFIERS, NAMED_KEYS, ToolDispatcher
from .errors import BindError
from .models import ACCESSIBLE_ROLES
from .tree import DEFAULT_MAX_DEPTH, MAX_TREE_DEPTH

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVER_NAME = "ui-introspect-mcp"
SERVER_VERSION = "0.1.0"

INSTRUCTIONS = dedent("""
This server connects to a running UI application and lets you inspect and
interact with its UI. The application attaches to this server's TCP port.

Recommended workflow:
1. list_windows - get window handles
2. get_window_properties - get the root_element_handle
3. get_element_tree (max_depth=2-3) - explore the UI hierarchy
4. find_elements_by_id or query_element_descendants for targeted lookups
5. get_element_properties - inspect specific elements
6. take_screenshot - see the current visual state

Handles (window_handle, element_handle) are {index, generation} objects
returned by the tools above. They stay valid while the application is
attached and the element exists; a handle the application rejects must be
looked up again.
""").strip()


# -----------------------------------------------------------------------------
# Tool Definitions
# -----------------------------------------------------------------------------


def handle_schema(description: str) -> dict[str, Any]:
    """JSON schema for an {index, generation} handle argument."""
    return {
        "type": "object",
        "description": description,
        "properties": {
            "index": {"type": "integer", "minimum": 0},
            "generation": {"type": "integer", "minimum": 0},
        },
        "required": ["index", "generation"],
    }


TOOLS = [
    types.Tool(
        name="list_windows",
        description=(
            "List all windows of the connected application. Returns window "
            "handles for use with other tools. Typically the first tool to call."
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="get_window_properties",
        description="""Get properties of a window.

Returns size, position, fullscreen/maximized/minimized state and the
root_element_handle, which is the entry point for get_element_tree,
get_element_properties and query_element_descendants.""",
        inputSchema={
            "type": "object",
            "properties": {
                "window_handle": handle_schema("Window handle from list_windows"),
            },
            "required": ["window_handle"],
        },
    ),
    types.Tool(
        name="find_elements_by_id",
        description=(
            "Find elements by their qualified id (e.g. 'App::ok_button'). "
            "Returns element handles. Use get_element_tree first to discover ids."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "window_handle": handle_schema("Window handle"),
                "qualified_id": {
                    "type": "string",
                    "description": "Qualified element id (e.g. 'App::ok_button')",
                },
            },
            "required": ["window_handle", "qualified_id"],
        },
    ),
    types.Tool(
        name="get_element_properties",
        description="""Get all properties of an element.

Returns type info (most-derived type first), accessible role, accessible
properties (label, value, description, checked, enabled, ...), geometry
and computed opacity.""",
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema("Element handle"),
            },
            "required": ["element_handle"],
        },
    ),
    types.Tool(
        name="query_element_descendants",
        description="""Query descendants of an element with a chain of match instructions.

Each instruction narrows the search. Use match_descendants to search
recursively, then filter by id, type name or accessible role. Without a
filter every descendant matches. More efficient than get_element_tree for
targeted searches.

Returns matching element handles in tree order; use get_element_properties
on a handle for its details.""",
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema("Element handle to start the query from"),
                "filter": {
                    "type": "array",
                    "description": "Query instructions, applied in order",
                    "items": {
                        "type": "object",
                        "properties": {
                            "match_descendants": {
                                "type": "boolean",
                                "description": "Search recursively through all descendants",
                            },
                            "match_id": {
                                "type": "string",
                                "description": "Match elements by id",
                            },
                            "match_type_name": {
                                "type": "string",
                                "description": "Match elements by type name (e.g. 'Button')",
                            },
                            "match_type_name_or_base": {
                                "type": "string",
                                "description": "Match by type name or an inherited base type",
                            },
                            "match_accessible_role": {
                                "type": "string",
                                "enum": list(ACCESSIBLE_ROLES),
                                "description": "Match by accessible role",
                            },
                        },
                    },
                },
                "find_all": {
                    "type": "boolean",
                    "description": "Return all matches; if false, only the first.",
                    "default": True,
                },
            },
            "required": ["element_handle"],
        },
    ),
    types.Tool(
        name="get_element_tree",
        description=(
            "Get the element tree below an element as nested JSON with all "
            "element properties. Costs two round trips per expanded element. "
            "Start with max_depth=2 or 3 for an overview, then drill deeper."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema(
                    "Root element handle (typically root_element_handle "
                    "from get_window_properties)"
                ),
                "max_depth": {
                    "type": "integer",
                    "minimum": 0,
                    "description": (
                        f"Levels of children to expand (default: {DEFAULT_MAX_DEPTH}, "
                        f"capped at {MAX_TREE_DEPTH}). 0 returns only the element."
                    ),
                    "default": DEFAULT_MAX_DEPTH,
                },
            },
            "required": ["element_handle"],
        },
    ),
    types.Tool(
        name="take_screenshot",
        description=(
            "Take a screenshot of a window. Returns an image content block "
            "that clients can render inline."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "window_handle": handle_schema("Window handle"),
            },
            "required": ["window_handle"],
        },
    ),
    types.Tool(
        name="click_element",
        description="Simulate a mouse click on an element.",
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema("Element handle"),
                "button": {
                    "type": "string",
                    "enum": list(CLICK_BUTTONS),
                    "default": "left",
                },
                "double": {
                    "type": "boolean",
                    "description": "Double click instead of single click",
                    "default": False,
                },
            },
            "required": ["element_handle"],
        },
    ),
    types.Tool(
        name="invoke_accessibility_action",
        description=(
            "Invoke an accessibility action on an element (e.g. default "
            "action for buttons, increment/decrement for sliders)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema("Element handle"),
                "action": {
                    "type": "string",
                    "enum": list(ACCESSIBILITY_ACTIONS),
                    "description": "The accessibility action to invoke",
                },
            },
            "required": ["element_handle", "action"],
        },
    ),
    types.Tool(
        name="set_element_value",
        description=(
            "Set the accessible value of an element (e.g. text input "
            "content, slider value)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "element_handle": handle_schema("Element handle"),
                "value": {
                    "type": "string",
                    "description": "The value to set",
                },
            },
            "required": ["element_handle", "value"],
        },
    ),
    types.Tool(
        name="dispatch_key_event",
        description="""Dispatch a key press or release to a window.

The event goes to the window's focused element. Send down=true then
down=false for a complete key stroke.""",
        inputSchema={
            "type": "object",
            "properties": {
                "window_handle": handle_schema("Window handle"),
                "key": {
                    "type": "string",
                    "description": (
                        "Key text (a single character) or a named key: "
                        + ", ".join(NAMED_KEYS)
                    ),
                },
                "modifiers": {
                    "type": "array",
                    "items": {"type": "string", "enum": list(KEY_MODIFIERS)},
                    "description": "Modifiers held during the event",
                },
                "down": {
                    "type": "boolean",
                    "description": "true for key press, false for key release",
                },
            },
            "required": ["window_handle", "key", "down"],
        },
    ),
]


def create_server(dispatcher: ToolDispatcher) -> Server:
    """Build the MCP server around a dispatcher."""
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION, instructions=INSTRUCTIONS)

    @server.list_tools()  # type: ignore
    async def list_tools() -> list[types.Tool]:
        """List available introspection tools."""
        return TOOLS

    @server.call_tool()  # type: ignore
    async def call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        """Handle tool calls."""
        result = await dispatcher.call(name, arguments)
        return result.to_call_tool_result()

    return server


async def main(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Bind the application port, then serve MCP over stdio."""
    logger.info("Starting UI introspection MCP server")

    connection = ConnectionManager(host=host, port=port, timeout=timeout)
    await connection.start()
    logger.info(
        "Point the application at %s:%d to attach it", connection.host, connection.port
    )

    server = create_server(ToolDispatcher(IntrospectionClient(connection)))
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await connection.close()


@click.command()
@click.option(
    "--host",
    help="Address the application connects to.",
    default=DEFAULT_HOST,
    envvar="UI_INTROSPECT_HOST",
    show_default=True,
)
@click.option(
    "--port",
    help="TCP port the application connects to.",
    default=DEFAULT_PORT,
    type=click.IntRange(0, 65535),
    envvar="UI_INTROSPECT_PORT",
    show_default=True,
)
@click.option(
    "--timeout",
    help="Seconds to wait for each round trip to the application.",
    default=DEFAULT_TIMEOUT,
    type=click.FloatRange(min=0, min_open=True),
    envvar="UI_INTROSPECT_TIMEOUT",
    show_default=True,
)
@click.option(
    "--log-level",
    help="Logging level (logs go to stderr).",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="UI_INTROSPECT_LOG_LEVEL",
    show_default=True,
)
def run(host: str, port: int, timeout: float, log_level: str) -> None:
    """Entry point for the MCP server."""
    logging.getLogger().setLevel(log_level.upper())
    try:
        asyncio.run(main(host=host, port=port, timeout=timeout))
    except BindError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down.")


if __name__ == "__main__":
    run()
