"""Entry point for the chat relay process."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .broker.auth import AuthorizationGate
from .broker.lifecycle import LifecycleHooks
from .broker.registry import ConnectionRegistry
from .broker.router import MessageRouter
from .endpoints import HttpEndpoints
from .history import HistoryBuffer
from .paths import Paths
from .settings import Settings
from .storage.audit import AuditLog
from .transport import RelayServer

log = logging.getLogger(__name__)


class Core:
    """Top-level orchestrator that owns all subsystems."""

    def __init__(
        self,
        paths: Paths | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.paths = paths or Paths()
        self.settings = settings or Settings.load(self.paths)
        self.audit = AuditLog(self.paths.audit_log)
        self.history = HistoryBuffer()
        self.registry = ConnectionRegistry()
        self.gate = AuthorizationGate(self.registry, self.settings.owner_code)
        self.router = MessageRouter(self.registry, self.history, self.gate, self.audit)
        self.hooks = LifecycleHooks(self.registry, self.history, self.audit)
        self.endpoints = HttpEndpoints(
            self.registry,
            self.history,
            self.audit,
            self.settings.owner_code,
            recent_limit=self.settings.audit_recent_limit,
        )
        self.server = RelayServer(
            self.hooks,
            self.router,
            self.endpoints,
            host=self.settings.host,
            port=self.settings.port,
        )
        self._audit_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the audit writer and bind the server."""
        if not self.gate.enabled:
            log.warning("no owner code configured; owner access is disabled")
        self._audit_task = asyncio.create_task(self.audit.run())
        await self.server.start()
        log.info("ready for connections")

    async def run(self) -> None:
        """Start everything and serve until cancelled."""
        await self.start()
        try:
            await self.server.serve_forever()
        except asyncio.CancelledError:
            log.info("relay shutting down")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        await self.server.stop()
        if self._audit_task is not None:
            try:
                await asyncio.wait_for(self.audit.flush(), timeout=5.0)
            except asyncio.TimeoutError:
                log.warning("audit log not fully flushed at shutdown")
            self._audit_task.cancel()
            try:
                await self._audit_task
            except asyncio.CancelledError:
                pass
            self._audit_task = None
        log.info("relay stopped")


async def _serve(core: Core) -> None:
    task = asyncio.create_task(core.run())
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, task)
        except NotImplementedError:
            pass
    await task


def _on_signal(sig: signal.Signals, task: asyncio.Task) -> None:
    log.info("received %s, shutting down gracefully", sig.name)
    task.cancel()


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat relay server")
    parser.add_argument(
        "--data-dir", default="data",
        help="Data directory (default: data)",
    )
    parser.add_argument(
        "--host", default=None,
        help="Listen host (default: HOST env or 0.0.0.0)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Listen port (default: PORT env or 10000)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    paths = Paths(root=args.data_dir)
    settings = Settings.load(paths).with_overrides(host=args.host, port=args.port)
    core = Core(paths=paths, settings=settings)
    asyncio.run(_serve(core))


if __name__ == "__main__":
    main()
