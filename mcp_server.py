"""Figma relay — MCP server for reading and editing Figma files.

Read tools call the Figma REST API directly. Write tools cannot: the REST API
has no mutation endpoints, so they are relayed to a Figma plugin running
inside the target file. The plugin polls this server's webhook for queued
commands and posts each result back.

Architecture:
  MCP client --JSON-RPC/stdio--> mcp_server.py --HTTPS--> api.figma.com   (reads)
                                      |
                                 CommandRelay <--HTTP poll/results-- Figma plugin  (writes)
                                      |
                              plugin_bridge.py (webhook, default :3456)
"""

import asyncio
import json
import os
import sys

from dotenv import load_dotenv
load_dotenv()

import httpx
from mcp.server.fastmcp import FastMCP

import design_system
from command_relay import Action, CommandRelay, RelayError
from figma_api import FigmaAPIError, FigmaClient
from plugin_bridge import DEFAULT_WEBHOOK_HOST, DEFAULT_WEBHOOK_PORT, create_webhook_server

mcp = FastMCP("figma-relay")

DEFAULT_RELAY_TIMEOUT_SECONDS = 30
DEFAULT_FILE_DEPTH = 3


def _relay_timeout(timeout: float | None = None) -> float:
    """Resolve a write timeout: parameter > FIGMA_RELAY_TIMEOUT_SECONDS > 30s."""
    if timeout is not None:
        return float(timeout)
    return float(os.environ.get("FIGMA_RELAY_TIMEOUT_SECONDS", DEFAULT_RELAY_TIMEOUT_SECONDS))


def _webhook_address() -> tuple[str, int]:
    host = os.environ.get("WEBHOOK_HOST", DEFAULT_WEBHOOK_HOST)
    port = int(os.environ.get("WEBHOOK_PORT", str(DEFAULT_WEBHOOK_PORT)))
    return host, port


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

_relay = None
_figma_client = None


def get_relay() -> CommandRelay:
    global _relay
    if _relay is None:
        _relay = CommandRelay()
    return _relay


def get_figma_client() -> FigmaClient:
    global _figma_client
    if _figma_client is None:
        token = os.environ.get("FIGMA_ACCESS_TOKEN")
        if not token:
            raise RuntimeError("FIGMA_ACCESS_TOKEN environment variable required")
        _figma_client = FigmaClient(token)
    return _figma_client


# ---------------------------------------------------------------------------
# Result formatting
# ---------------------------------------------------------------------------

def _error_result(exc: Exception) -> str:
    print(f"[figma-relay] Error: {exc}", file=sys.stderr, flush=True)
    return json.dumps({"status": "error", "error": type(exc).__name__, "message": str(exc)})


def _compact(payload: dict) -> dict:
    """Drop unset optional fields; the plugin treats missing keys as defaults."""
    return {k: v for k, v in payload.items() if v is not None}


async def _relay_write(file_key: str, action: Action, payload: dict, summary: dict,
                       timeout: float | None = None) -> str:
    try:
        result = await get_relay().submit(file_key, action, _compact(payload), _relay_timeout(timeout))
    except RelayError as e:
        return _error_result(e)
    node_id = result.get("nodeId") if isinstance(result, dict) else None
    return json.dumps({"status": "ok", **summary, "node_id": node_id, "result": result}, indent=2)


# ---------------------------------------------------------------------------
# MCP Tools: reads (REST API)
# ---------------------------------------------------------------------------

@mcp.tool(description="Get complete Figma file structure with all pages, frames, and nodes.")
async def get_file(file_key: str, depth: int = DEFAULT_FILE_DEPTH) -> str:
    """Return the document tree of a Figma file.

    file_key is the key from the file URL (figma.com/file/FILE_KEY/...).
    depth limits how far the tree is fetched and summarised (1-5, default 3).
    """
    try:
        data = await get_figma_client().get_file(file_key, depth=depth)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    structure = design_system.extract_structure(data.get("document", {}), max_depth=depth)
    return json.dumps({"name": data.get("name"), "document": structure}, indent=2)


@mcp.tool(description="Extract design system: colors, typography, components, spacing.")
async def read_design_system(file_key: str) -> str:
    try:
        data = await get_figma_client().get_file(file_key)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    return json.dumps(design_system.read_design_system(data.get("document", {})), indent=2)


@mcp.tool(description="Export frames/nodes as images (png, jpg, svg, pdf) and return download URLs.")
async def export_nodes(file_key: str, node_ids: list[str], format: str = "png", scale: float = 2) -> str:
    try:
        data = await get_figma_client().get_images(file_key, node_ids, format=format, scale=scale)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    return json.dumps(data, indent=2)


@mcp.tool(description="Fetch all comments from a Figma file.")
async def get_comments(file_key: str) -> str:
    try:
        data = await get_figma_client().get_comments(file_key)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    comments = data.get("comments") or []
    return json.dumps({"count": len(comments), "comments": comments}, indent=2)


@mcp.tool(description="Add a comment to a Figma file, optionally pinned to a node or position.")
async def add_comment(file_key: str, message: str, node_id: str | None = None,
                      x: float | None = None, y: float | None = None) -> str:
    try:
        data = await get_figma_client().post_comment(file_key, message, node_id=node_id, x=x, y=y)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    return json.dumps({"status": "ok", "id": data.get("id"), "message": message}, indent=2)


@mcp.tool(description="Analyze a Figma file's design system and suggest improvements.")
async def analyze_and_suggest(file_key: str, focus: str = "all") -> str:
    """Score a file's consistency and list suggestions.

    focus is one of accessibility, consistency, spacing, colors, typography, all.
    """
    try:
        data = await get_figma_client().get_file(file_key)
    except (FigmaAPIError, httpx.HTTPError) as e:
        return _error_result(e)
    summary = design_system.read_design_system(data.get("document", {}))
    return json.dumps(design_system.analyze_design(summary, focus), indent=2)


# ---------------------------------------------------------------------------
# MCP Tools: writes (relayed to the plugin)
# ---------------------------------------------------------------------------

@mcp.tool(description="Create a new frame in Figma. Requires the plugin running in the file.")
async def create_frame(file_key: str, name: str, width: float, height: float,
                       x: float = 0, y: float = 0, background_color: str | None = None) -> str:
    payload = {
        "name": name,
        "width": width,
        "height": height,
        "x": x,
        "y": y,
        "backgroundColor": design_system.hex_to_rgb(background_color) if background_color else None,
    }
    return await _relay_write(file_key, Action.CREATE_FRAME, payload,
                              {"name": name, "size": f"{width:g}x{height:g}"})


@mcp.tool(description="Create a rectangle shape. Requires the plugin running in the file.")
async def create_rectangle(file_key: str, name: str, width: float, height: float,
                           parent_id: str | None = None, x: float = 0, y: float = 0,
                           fill_color: str | None = None, corner_radius: float = 0) -> str:
    payload = {
        "parentId": parent_id,
        "name": name,
        "x": x,
        "y": y,
        "width": width,
        "height": height,
        "fillColor": design_system.hex_to_rgb(fill_color) if fill_color else None,
        "cornerRadius": corner_radius,
    }
    return await _relay_write(file_key, Action.CREATE_RECTANGLE, payload,
                              {"name": name, "size": f"{width:g}x{height:g}"})


@mcp.tool(description="Create a text node. Requires the plugin running in the file.")
async def create_text(file_key: str, text: str, parent_id: str | None = None,
                      x: float = 0, y: float = 0, font_size: float = 16,
                      font_family: str = "Inter", font_weight: str = "Regular",
                      text_color: str = "#000000", text_align: str = "LEFT") -> str:
    """Create a text node. font_family must be available in Figma.

    text_align is one of LEFT, CENTER, RIGHT, JUSTIFIED.
    """
    payload = {
        "parentId": parent_id,
        "text": text,
        "x": x,
        "y": y,
        "fontSize": font_size,
        "fontFamily": font_family,
        "fontWeight": font_weight,
        "textColor": design_system.hex_to_rgb(text_color),
        "textAlign": text_align,
    }
    return await _relay_write(file_key, Action.CREATE_TEXT, payload,
                              {"text": text, "font": f"{font_family} {font_weight} {font_size:g}px"})


@mcp.tool(description="Create a button component with a label. Requires the plugin.")
async def create_button(file_key: str, label: str, parent_id: str | None = None,
                        x: float = 0, y: float = 0, variant: str = "primary",
                        size: str = "medium") -> str:
    """variant: primary, secondary, outline, ghost. size: small, medium, large."""
    payload = {
        "parentId": parent_id,
        "label": label,
        "x": x,
        "y": y,
        "variant": variant,
        "size": size,
    }
    return await _relay_write(file_key, Action.CREATE_BUTTON, payload,
                              {"label": label, "variant": variant, "size": size})


@mcp.tool(description="Create an input field component. Requires the plugin.")
async def create_input_field(file_key: str, label: str, parent_id: str | None = None,
                             placeholder: str = "", x: float = 0, y: float = 0,
                             width: float = 300, type: str = "text") -> str:
    payload = {
        "parentId": parent_id,
        "label": label,
        "placeholder": placeholder,
        "x": x,
        "y": y,
        "width": width,
        "type": type,
    }
    return await _relay_write(file_key, Action.CREATE_INPUT, payload, {"label": label, "type": type})


@mcp.tool(description="Build a complete screen from written requirements. Requires the plugin.")
async def build_prototype_screen(file_key: str, screen_name: str, requirements: str,
                                 style: str = "modern", device: str = "mobile",
                                 timeout: float | None = None) -> str:
    """Plan a screen layout and have the plugin build it.

    style: modern, minimal, corporate, playful, neumorphic.
    device: mobile, tablet, desktop, watch.
    Screens take longer than single nodes; timeout (seconds) overrides
    FIGMA_RELAY_TIMEOUT_SECONDS (default 30) for this call.
    """
    layout = design_system.generate_layout_plan(requirements, style, device)
    payload = {
        "screenName": screen_name,
        "requirements": requirements,
        "style": style,
        "device": device,
        "layout": layout,
    }
    return await _relay_write(file_key, Action.BUILD_SCREEN, payload,
                              {"name": screen_name, "style": style, "device": device, "layout": layout},
                              timeout=timeout)


@mcp.tool(description="Apply auto-layout to a frame. Requires the plugin.")
async def apply_auto_layout(file_key: str, node_id: str, direction: str = "VERTICAL",
                            spacing: float = 16, padding: float = 24) -> str:
    payload = {
        "nodeId": node_id,
        "direction": direction,
        "spacing": spacing,
        "padding": padding,
    }
    return await _relay_write(file_key, Action.APPLY_AUTO_LAYOUT, payload,
                              {"direction": direction, "spacing": spacing, "padding": padding})


# ---------------------------------------------------------------------------
# MCP Tools: status
# ---------------------------------------------------------------------------

@mcp.tool(description="Get relay status: connected plugins, queued commands, pending operations.")
def get_status() -> str:
    """Report which files have a plugin polling, what is queued, and what is awaiting results.

    Non-blocking: reads relay state only, never waits on a plugin.
    """
    host, port = _webhook_address()
    return json.dumps({
        "webhook_url": f"http://{host}:{port}",
        **get_relay().snapshot(),
    }, indent=2)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _serve() -> None:
    relay = get_relay()
    host, port = _webhook_address()
    webhook = create_webhook_server(relay, host, port)
    webhook_task = asyncio.create_task(webhook.serve())
    try:
        await mcp.run_stdio_async()
    finally:
        relay.close()
        webhook.should_exit = True
        await webhook_task
        if _figma_client is not None:
            await _figma_client.aclose()


def main() -> None:
    if not os.environ.get("FIGMA_ACCESS_TOKEN"):
        print("[figma-relay] Error: FIGMA_ACCESS_TOKEN environment variable required", file=sys.stderr)
        print("Get your token at: https://www.figma.com/developers/api#access-tokens", file=sys.stderr)
        sys.exit(1)
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
