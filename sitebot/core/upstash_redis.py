import os
import json
from typing import Any, Optional, List

import httpx


class UpstashRedisError(RuntimeError):
    pass


class UpstashRedis:
    """Minimal async client for the Upstash Redis REST API."""

    def __init__(self, rest_url: Optional[str] = None, rest_token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rest_url = rest_url
        self.rest_token = rest_token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _refresh_config(self) -> None:
        if not self.rest_url:
            self.rest_url = os.getenv("UPSTASH_REDIS_REST_URL")
        if not self.rest_token:
            self.rest_token = os.getenv("UPSTASH_REDIS_REST_TOKEN")

    def is_configured(self) -> bool:
        self._refresh_config()
        return bool(self.rest_url and self.rest_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0, connect=5.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def command(self, args: List[Any]) -> Any:
        if not self.is_configured():
            raise UpstashRedisError("Upstash Redis is not configured")

        client = self._get_client()
        resp = await client.post(
            self.rest_url,
            headers={"Authorization": f"Bearer {self.rest_token}"},
            content=json.dumps(args),
        )
        resp.raise_for_status()
        payload = resp.json()

        if isinstance(payload, dict) and payload.get("error"):
            raise UpstashRedisError(str(payload.get("error")))

        if isinstance(payload, dict) and "result" in payload:
            return payload.get("result")

        return payload

    async def get(self, key: str) -> Optional[str]:
        return await self.command(["GET", key])

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.command(["SET", key, value, "EX", int(ttl_seconds)])

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set_ex(key, json.dumps(value), ttl_seconds)

    async def incr(self, key: str) -> int:
        res = await self.command(["INCR", key])
        return int(res)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self.command(["EXPIRE", key, int(ttl_seconds)])

    async def ttl(self, key: str) -> int:
        # -2 missing key, -1 no expiry
        res = await self.command(["TTL", key])
        return int(res)

    async def exists(self, key: str) -> bool:
        res = await self.command(["EXISTS", key])
        return int(res) > 0

    async def delete(self, key: str) -> None:
        await self.command(["DEL", key])
