"""HTTP bridge between plugin hosts and the command relay.

The Figma plugin cannot receive calls, so it talks to this webhook instead:

  POST /plugin/register   {"fileKey", "pluginVersion"}          -> {"accepted": true, ...}
  GET  /commands/{fileKey}                                       -> {"commands": [...]}
  POST /results           {"operationId", "success", "data", "error"} -> {"acknowledged": true}
  GET  /health                                                   -> {"status": "ok", ...}

The server runs beside the MCP stdio transport, so it must never write to
stdout: uvicorn's access log is disabled and diagnostics go to stderr.
"""

import json
import sys
from datetime import datetime, timezone

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from command_relay import CommandRelay

DEFAULT_WEBHOOK_HOST = "localhost"
DEFAULT_WEBHOOK_PORT = 3456
# Figma plugins post large design payloads; matches the original 50mb limit.
MAX_BODY_BYTES = 50 * 1024 * 1024


def _bad_request(detail: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": "bad_request", "detail": detail}, status_code=status_code)


async def _read_json(request: Request) -> dict:
    """Parse a JSON object body. Raises ValueError with a client-facing message."""
    body = await request.body()
    if len(body) > MAX_BODY_BYTES:
        raise ValueError(f"body exceeds {MAX_BODY_BYTES} bytes")
    try:
        payload = json.loads(body or b"{}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError("JSON body must be an object")
    return payload


def build_webhook_app(relay: CommandRelay, public_url: str | None = None) -> Starlette:
    """Create the Starlette app exposing *relay* to plugin hosts."""
    webhook_url = public_url or f"http://{DEFAULT_WEBHOOK_HOST}:{DEFAULT_WEBHOOK_PORT}"

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "message": "Figma relay MCP server",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def register(request: Request) -> JSONResponse:
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _bad_request(str(e))
        file_key = body.get("fileKey")
        if not file_key or not isinstance(file_key, str):
            return _bad_request("fileKey is required")
        ack = relay.register_host(file_key, body.get("pluginVersion"))
        return JSONResponse({**ack, "registered": ack["accepted"], "webhookUrl": webhook_url})

    async def commands(request: Request) -> JSONResponse:
        file_key = request.path_params["file_key"]
        drained = relay.poll_commands(file_key)
        return JSONResponse({"commands": [c.to_wire() for c in drained]})

    async def results(request: Request) -> JSONResponse:
        try:
            body = await _read_json(request)
        except ValueError as e:
            return _bad_request(str(e))
        token = body.get("operationId")
        if not token or not isinstance(token, str):
            return _bad_request("operationId is required")
        error = body.get("error")
        ack = relay.post_result(
            token,
            bool(body.get("success")),
            body.get("data"),
            str(error) if error is not None else None,
        )
        return JSONResponse({**ack, "received": ack["acknowledged"]})

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/plugin/register", register, methods=["POST"]),
        Route("/commands/{file_key:str}", commands, methods=["GET"]),
        Route("/results", results, methods=["POST"]),
    ]
    # The plugin UI is a sandboxed iframe with a null origin.
    middleware = [Middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])]
    return Starlette(routes=routes, middleware=middleware)


def create_webhook_server(relay: CommandRelay, host: str = DEFAULT_WEBHOOK_HOST,
                          port: int = DEFAULT_WEBHOOK_PORT) -> uvicorn.Server:
    app = build_webhook_app(relay, public_url=f"http://{host}:{port}")
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        access_log=False,
        log_level="warning",
        lifespan="off",
    )
    print(f"[bridge] Starting webhook server on http://{host}:{port}", file=sys.stderr, flush=True)
    return uvicorn.Server(config)
