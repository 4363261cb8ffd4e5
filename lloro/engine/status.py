"""Backend status shown to the user, and the periodic health probe."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .rpc_client import HealthStatus, RpcClient

logger = logging.getLogger(__name__)


class BackendState(Enum):
    CONNECTING = "connecting"
    WORKING = "working"
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class BackendStatus:
    state: BackendState = BackendState.CONNECTING
    text: str = "Connecting..."
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def set(self, state: BackendState, text: str) -> None:
        if state is not self.state or text != self.text:
            logger.debug("Backend status: %s (%s)", state.value, text)
        self.state = state
        self.text = text
        self.updated_at = datetime.now(timezone.utc)

    def apply_health(self, health: HealthStatus) -> None:
        if health.alive:
            self.set(BackendState.ONLINE, health.label)
        else:
            self.set(BackendState.OFFLINE, health.label)


class HealthMonitor:
    """Refreshes a BackendStatus from the health endpoint.

    ``start`` only begins polling when the first probe succeeds, so a
    backend that is down at startup is not hammered.
    """

    def __init__(
        self,
        rpc: RpcClient,
        status: BackendStatus,
        interval_seconds: float = 30.0,
    ) -> None:
        self._rpc = rpc
        self._status = status
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> HealthStatus:
        health = await self._rpc.health_check()
        self._status.apply_health(health)
        return health

    async def start(self) -> HealthStatus:
        health = await self.refresh()
        if health.alive and not self.running and self._interval > 0:
            self._task = asyncio.create_task(self._poll())
        return health

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.refresh()
