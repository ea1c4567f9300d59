# services/api/offline/api_client.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from offline.errors import ApiError

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin async wrapper over httpx for the document service.

    Every request carries the caller header; any status >= 400 becomes an
    ApiError. Transport failures (no network, timeouts) propagate as
    httpx.TransportError so the queue can tell them apart.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"X-User-Id": user_id},
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        resp = await self._client.request(method, path, json=json, params=params)
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text
            detail = body.get("detail") if isinstance(body, dict) else body
            logger.warning(f"{method} {path} failed: {resp.status_code} {detail}")
            raise ApiError(resp.status_code, detail, method, path)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            # applied on the server; the body just is not JSON
            logger.warning(f"{method} {path} returned a non-JSON body ({resp.status_code})")
            return resp.text

    async def get(self, path: str, **params: Any) -> Any:
        return await self.request("GET", path, params=params or None)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def patch(self, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def aclose(self) -> None:
        await self._client.aclose()
