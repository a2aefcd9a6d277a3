"""Async client for the Figma REST API (read operations and comments).

Plain request/response: no correlation, no retries. Failures surface as
FigmaAPIError and propagate to the tool that made the call.
"""

import os

import httpx

FIGMA_API_BASE = "https://api.figma.com/v1"
REQUEST_TIMEOUT_SECONDS = 30.0


class FigmaAPIError(Exception):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Figma API error: {status_code} - {body}")


class FigmaClient:
    def __init__(self, access_token: str, base_url: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url or os.environ.get("FIGMA_API_BASE", FIGMA_API_BASE)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Figma-Token": access_token,
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def request(self, method: str, endpoint: str, *, params: dict | None = None,
                      json: dict | None = None) -> dict:
        response = await self._client.request(method, endpoint, params=params, json=json)
        if response.is_error:
            raise FigmaAPIError(response.status_code, response.text)
        return response.json()

    async def get_file(self, file_key: str, depth: int | None = None) -> dict:
        params = {"depth": depth} if depth is not None else None
        return await self.request("GET", f"/files/{file_key}", params=params)

    async def get_images(self, file_key: str, ids: list[str], format: str = "png",
                         scale: float = 2) -> dict:
        params = {"ids": ",".join(ids), "format": format, "scale": scale}
        return await self.request("GET", f"/images/{file_key}", params=params)

    async def get_comments(self, file_key: str) -> dict:
        return await self.request("GET", f"/files/{file_key}/comments")

    async def post_comment(self, file_key: str, message: str, node_id: str | None = None,
                           x: float | None = None, y: float | None = None) -> dict:
        body: dict = {"message": message}
        client_meta: dict = {}
        if node_id:
            client_meta["node_id"] = node_id
        if x is not None and y is not None:
            client_meta["node_offset"] = {"x": x, "y": y}
        if client_meta:
            body["client_meta"] = client_meta
        return await self.request("POST", f"/files/{file_key}/comments", json=body)

    async def aclose(self) -> None:
        await self._client.aclose()
