from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from lloro.adapters.content import StaticContentProvider
from lloro.engine.config import LloroConfig
from lloro.engine.rpc_client import RpcClient
from lloro.shared.services.persistence import SessionStore
from lloro.shared.services.storage import MemoryStorage


class RecordingRpc(RpcClient):
    """RpcClient whose transport is replaced by an in-memory fake backend."""

    def __init__(self) -> None:
        super().__init__(LloroConfig())
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.on_call: Callable[[str, dict[str, Any]], Awaitable[None]] | None = None

    def chat_params(self) -> list[dict[str, Any]]:
        return [params for method, params in self.calls if method == "Chat"]

    async def call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((method, dict(params)))
        if self.on_call is not None:
            await self.on_call(method, params)
        if self.gate is not None:
            await self.gate.wait()
        exc = self.failures.get(method)
        if exc is not None:
            raise exc
        if method == "InitSession":
            return {"model": params["model"]}
        return {"response": f"echo: {params['message']}"}


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> SessionStore:
    return SessionStore(storage, default_model="gemini-pro")


@pytest.fixture
def rpc() -> RecordingRpc:
    return RecordingRpc()


@pytest.fixture
def provider() -> StaticContentProvider:
    return StaticContentProvider()
