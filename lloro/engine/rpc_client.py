"""JSON-RPC 2.0 client for the language-model backend.

Two endpoints:
    POST {backend}/rpc     InitSession, Chat
    GET  {backend}/health  liveness probe, never raises

Every call is single-shot; retrying is up to the caller.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import aiohttp

from .config import LloroConfig
from .errors import ProtocolError, RemoteError, TransportError

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response received"


@dataclass
class HealthStatus:
    """Result of a health probe."""
    alive: bool
    model: str | None = None
    mode: str | None = None
    error: str | None = None

    @property
    def label(self) -> str:
        if not self.alive:
            return "Backend offline"
        return self.model or "Ready"


class RpcClient:
    """Sends JSON-RPC requests over a lazily created aiohttp session."""

    def __init__(
        self,
        config: LloroConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config or LloroConfig()
        self._session = session
        self._owns_session = session is None
        # Time-seeded so ids stay unique across client restarts too.
        self._ids = itertools.count(int(time.time() * 1000))

    @property
    def config(self) -> LloroConfig:
        return self._config

    async def __aenter__(self) -> RpcClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def next_id(self) -> int:
        return next(self._ids)

    async def call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        """Issue one JSON-RPC request and return its ``result`` object."""
        request_id = self.next_id()
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        logger.debug("RPC %s id=%s -> %s", method, request_id, self._config.rpc_url)

        try:
            async with self._get_session().post(
                self._config.rpc_url, json=payload, timeout=timeout,
            ) as response:
                if response.status < 200 or response.status >= 300:
                    reason = response.reason or "unexpected status"
                    raise TransportError(method, reason, status=response.status)
                body = await response.read()
        except asyncio.TimeoutError as exc:
            raise TransportError(
                method, f"timed out after {self._config.request_timeout_seconds}s",
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(method, f"{type(exc).__name__}: {exc}") from exc

        result = self._parse_envelope(method, body)
        logger.debug("RPC %s id=%s completed", method, request_id)
        return result

    @staticmethod
    def _parse_envelope(method: str, body: bytes) -> dict[str, Any]:
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(method, "response is not valid UTF-8") from exc
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(method, f"response is not JSON ({exc.msg})") from exc
        if not isinstance(envelope, dict):
            raise ProtocolError(method, "response is not a JSON object")

        error = envelope.get("error")
        if error is not None:
            if isinstance(error, dict):
                message = error.get("message")
                code = error.get("code")
            else:
                message, code = error, None
            if not isinstance(code, int):
                code = None
            raise RemoteError(method, str(message or "Unknown backend error"), code=code)

        if "result" not in envelope:
            raise ProtocolError(method, "response has neither result nor error")
        result = envelope["result"]
        if not isinstance(result, dict):
            raise ProtocolError(method, "result is not a JSON object")
        return result

    async def health_check(self) -> HealthStatus:
        """Probe the health endpoint. Failures are reported, never raised."""
        timeout = aiohttp.ClientTimeout(total=self._config.health_timeout_seconds)
        try:
            async with self._get_session().get(
                self._config.health_url, timeout=timeout,
            ) as response:
                if response.status < 200 or response.status >= 300:
                    return HealthStatus(alive=False, error=f"HTTP {response.status}")
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            return HealthStatus(alive=False, error="health check timed out")
        except (aiohttp.ClientError, ValueError) as exc:
            logger.debug("Health check failed: %s", exc)
            return HealthStatus(alive=False, error=f"{type(exc).__name__}: {exc}")

        if not isinstance(data, dict):
            return HealthStatus(alive=True)
        return HealthStatus(
            alive=True,
            model=data.get("model") or None,
            mode=data.get("mode") or None,
        )

    async def init_session(self, model: str) -> str:
        """Start a backend session; returns the model the backend settled on."""
        result = await self.call("InitSession", {"model": model})
        return result.get("model") or model

    async def chat(self, message: str, context: str) -> str:
        result = await self.call("Chat", {"message": message, "context": context})
        return result.get("response") or NO_RESPONSE_TEXT
