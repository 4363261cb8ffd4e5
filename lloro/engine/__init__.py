"""Lloro engine: multi-session chat with pinned page context over JSON-RPC."""
from .config import DeliveryPolicy, LloroConfig, load_yaml_config
from .errors import (
    EmptyMessageError,
    ExtractionFailedError,
    LloroError,
    ProtocolError,
    RemoteError,
    RpcError,
    SessionNotFoundError,
    TransportError,
    TurnInFlightError,
    ValidationError,
)

__all__ = [
    # Config
    "DeliveryPolicy",
    "LloroConfig",
    "load_yaml_config",
    # Components (lazy import)
    "RpcClient",
    "HealthStatus",
    "ContextPinning",
    "ChatTurnOrchestrator",
    "SessionLifecycleController",
    "ActiveSessionHandle",
    "BackendStatus",
    "HealthMonitor",
    # Errors
    "EmptyMessageError",
    "ExtractionFailedError",
    "LloroError",
    "ProtocolError",
    "RemoteError",
    "RpcError",
    "SessionNotFoundError",
    "TransportError",
    "TurnInFlightError",
    "ValidationError",
]


def __getattr__(name: str):
    if name in ("RpcClient", "HealthStatus"):
        from . import rpc_client
        return getattr(rpc_client, name)
    if name == "ContextPinning":
        from .pinning import ContextPinning
        return ContextPinning
    if name == "ChatTurnOrchestrator":
        from .orchestrator import ChatTurnOrchestrator
        return ChatTurnOrchestrator
    if name in ("SessionLifecycleController", "ActiveSessionHandle"):
        from . import session_controller
        return getattr(session_controller, name)
    if name in ("BackendStatus", "HealthMonitor"):
        from . import status
        return getattr(status, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
