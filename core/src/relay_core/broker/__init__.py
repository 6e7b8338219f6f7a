"""Connection registry, authorization, routing and lifecycle for the relay."""

from .auth import AuthorizationGate, secret_matches
from .lifecycle import LifecycleHooks
from .registry import ConnectionEntry, ConnectionRegistry
from .router import MessageRouter

__all__ = [
    "AuthorizationGate",
    "ConnectionEntry",
    "ConnectionRegistry",
    "LifecycleHooks",
    "MessageRouter",
    "secret_matches",
]
