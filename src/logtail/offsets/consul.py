"""Consul KV offset store.

Talks to the Consul HTTP API directly:

    GET /v1/kv/<key>?raw   -> stored bytes, 404 when the key is absent
    PUT /v1/kv/<key>       -> body "true" when the write was applied

An ACL token is sent as ``X-Consul-Token``; a datacenter, if configured, is
passed as the ``dc`` query parameter.
"""

from urllib.parse import quote

import aiohttp

from core.errors.exceptions import OffsetStoreError, classify_http_status
from logtail.offsets.base import BaseOffsetStore


class ConsulOffsetStore(BaseOffsetStore):
    """Cursors stored as raw values in Consul's key/value store."""

    backend = "consul"

    def __init__(
        self,
        address: str,
        token: str = "",
        datacenter: str = "",
        session: aiohttp.ClientSession | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.address = address.rstrip("/")
        self.token = token
        self.datacenter = datacenter
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            headers = {"X-Consul-Token": self.token} if self.token else {}
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
            self._owns_session = True
        self._logger.info(
            "Consul offset store ready",
            extra={"backend": self.backend, "address": self.address},
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url(self, key: str) -> str:
        return f"{self.address}/v1/kv/{quote(key.lstrip('/'), safe='/')}"

    def _params(self, **extra: str) -> dict[str, str]:
        params = dict(extra)
        if self.datacenter:
            params["dc"] = self.datacenter
        return params

    def _session_or_raise(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("ConsulOffsetStore not started. Call start() first.")
        return self._session

    async def _read(self, key: str) -> bytes | None:
        session = self._session_or_raise()
        async with session.get(self._url(key), params=self._params(raw="")) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                await self._raise_for_status(response, key, "read")
            return await response.read()

    async def _write(self, key: str, data: bytes) -> None:
        session = self._session_or_raise()
        async with session.put(self._url(key), params=self._params(), data=data) as response:
            if response.status != 200:
                await self._raise_for_status(response, key, "write")
            body = (await response.text()).strip()
            if body != "true":
                raise OffsetStoreError(
                    f"Consul rejected write for '{key}': {body[:100]}",
                    context={"backend": self.backend, "checkpoint_key": key},
                )

    async def _raise_for_status(self, response: aiohttp.ClientResponse, key: str, operation: str):
        body = (await response.text())[:200]
        raise OffsetStoreError(
            f"Consul {operation} for '{key}' returned HTTP {response.status}: {body}",
            context={
                "backend": self.backend,
                "checkpoint_key": key,
                "http_status": response.status,
            },
            category=classify_http_status(response.status),
        )
