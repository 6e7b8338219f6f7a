"""Owner authorization: a single shared secret fixed at startup."""

from __future__ import annotations

import hmac

from .registry import ConnectionRegistry


def secret_matches(configured: str, supplied: object) -> bool:
    """Return True if *supplied* equals the configured secret.

    An empty configured secret matches nothing, which turns owner access off.
    """
    if not configured or not isinstance(supplied, str):
        return False
    # surrogatepass: JSON may carry lone surrogates that strict UTF-8 rejects.
    return hmac.compare_digest(
        configured.encode("utf-8", "surrogatepass"),
        supplied.encode("utf-8", "surrogatepass"),
    )


class AuthorizationGate:
    """Grants owner status to connections that present the shared secret."""

    def __init__(self, registry: ConnectionRegistry, secret: str) -> None:
        self._registry = registry
        self._secret = secret

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    def authorize(self, conn_id: str, supplied: object) -> bool:
        """Set the owner flag on a match. A mismatch never clears it."""
        if not secret_matches(self._secret, supplied):
            return False
        return self._registry.set_owner(conn_id, True)
