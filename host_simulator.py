#!/usr/bin/env python3
"""Stand-in for the Figma plugin's polling loop.

Registers with the relay webhook, polls GET /commands/{fileKey} on an
interval, executes each command against an in-memory node store and posts
exactly one result per command to POST /results. Useful for exercising the
MCP server without Figma:

  python host_simulator.py FILE_KEY --url http://localhost:3456

Protocol (same as the plugin):
  {"operationId": "...", "action": "CREATE_FRAME", "data": {...}} -> {"success": true, "data": {"nodeId": "1:2"}}
  unknown action or node                                          -> {"success": false, "error": "..."}
"""

import argparse
import asyncio
import os
import sys

import httpx

HOST_VERSION = "2.0.0"
DEFAULT_POLL_SECONDS = 2.0


class CommandFailed(Exception):
    pass


class SimulatedHost:
    def __init__(self, file_key: str, client: httpx.AsyncClient,
                 poll_interval: float | None = None):
        self.file_key = file_key
        self._client = client
        self.poll_interval = poll_interval or float(
            os.environ.get("FIGMA_HOST_POLL_SECONDS", DEFAULT_POLL_SECONDS))
        self.nodes: dict[str, dict] = {}
        self._next_id = 1

    def _create(self, node_type: str, data: dict) -> dict:
        parent_id = data.get("parentId")
        if parent_id and parent_id not in self.nodes:
            raise CommandFailed(f"Parent node not found: {parent_id}")
        self._next_id += 1
        node_id = f"1:{self._next_id}"
        self.nodes[node_id] = {"id": node_id, "type": node_type, "parentId": parent_id, **data}
        return {"nodeId": node_id}

    def execute(self, command: dict) -> dict:
        """Apply one command to the node store and return its result data."""
        action = command.get("action")
        data = command.get("data") or {}
        if action == "CREATE_FRAME":
            return self._create("FRAME", data)
        elif action == "CREATE_RECTANGLE":
            return self._create("RECTANGLE", data)
        elif action == "CREATE_TEXT":
            return self._create("TEXT", data)
        elif action in ("CREATE_BUTTON", "CREATE_INPUT"):
            return self._create("COMPONENT", data)
        elif action == "BUILD_SCREEN":
            size = (data.get("layout") or {}).get("device") or {}
            return self._create("FRAME", {"name": data.get("screenName"), **size})
        elif action == "APPLY_AUTO_LAYOUT":
            node = self.nodes.get(data.get("nodeId"))
            if node is None or node["type"] != "FRAME":
                raise CommandFailed(f"Frame not found: {data.get('nodeId')}")
            node["layoutMode"] = data.get("direction", "VERTICAL")
            node["itemSpacing"] = data.get("spacing", 16)
            node["padding"] = data.get("padding", 24)
            return {"nodeId": node["id"]}
        raise CommandFailed(f"Unknown action: {action}")

    async def register(self) -> dict:
        response = await self._client.post(
            "/plugin/register", json={"fileKey": self.file_key, "pluginVersion": HOST_VERSION})
        response.raise_for_status()
        return response.json()

    async def poll_once(self) -> int:
        """Drain the queue once and report every command. Returns how many ran."""
        response = await self._client.get(f"/commands/{self.file_key}")
        response.raise_for_status()
        commands = response.json().get("commands") or []
        if commands:
            print(f"[host] Received {len(commands)} command(s)", file=sys.stderr, flush=True)
        for command in commands:
            await self.report(command)
        return len(commands)

    async def report(self, command: dict) -> None:
        try:
            result = {"success": True, "data": self.execute(command), "error": None}
        except CommandFailed as e:
            result = {"success": False, "data": None, "error": str(e)}
        response = await self._client.post(
            "/results", json={"operationId": command.get("operationId"), **result})
        response.raise_for_status()

    async def run(self, stop: asyncio.Event) -> None:
        await self.register()
        while not stop.is_set():
            try:
                await self.poll_once()
            except httpx.HTTPError as e:
                # The plugin keeps polling through relay restarts.
                print(f"[host] Polling error: {e}", file=sys.stderr, flush=True)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass


async def _main(file_key: str, url: str) -> None:
    async with httpx.AsyncClient(base_url=url) as client:
        host = SimulatedHost(file_key, client)
        print(f"[host] Polling {url} for '{file_key}' every {host.poll_interval:g}s",
              file=sys.stderr, flush=True)
        await host.run(asyncio.Event())


def main():
    parser = argparse.ArgumentParser(description="Simulated Figma plugin host")
    parser.add_argument("file_key")
    parser.add_argument("--url", default=os.environ.get("WEBHOOK_URL", "http://localhost:3456"))
    args = parser.parse_args()
    try:
        asyncio.run(_main(args.file_key, args.url))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
