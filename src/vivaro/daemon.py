"""Daemon process for the local API server.

Usage: python -m vivaro serve

Manages:
- PID file (prevent duplicate instances)
- One-time legacy data migration
- HTTP server lifecycle
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from vivaro.config import VivaroConfig, load_config
from vivaro.core import Vivaro
from vivaro.store.migrate import migrate_legacy_data
from vivaro.web import VivaroServer

logger = logging.getLogger(__name__)


class VivaroDaemon:
    """Always-on API server process."""

    def __init__(self, config: VivaroConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"Vivaro server already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    def shutdown(self) -> None:
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def _build_vivaro(self) -> Vivaro:
        vivaro = Vivaro(self.config)
        migrated = migrate_legacy_data(vivaro.store)
        if migrated:
            logger.info("Migrated %d client(s) from the legacy data file", migrated)
        return vivaro

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        self.config.data_dir.mkdir(parents=True, exist_ok=True)
        vivaro = self._build_vivaro()
        server = VivaroServer(vivaro)

        logger.info("Vivaro server starting (data=%s)", self.config.data_dir)

        try:
            await server.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await server.stop()
            self._remove_pid()
            logger.info("Vivaro server stopped.")
