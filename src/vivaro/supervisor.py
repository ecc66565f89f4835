"""Desktop-shell side of the API server: one supervised child process.

The shell starts ``python -m vivaro serve`` with the port and data directory
in its environment, polls ``/api/health`` until the server answers and stops
the child on exit.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

import aiohttp

from vivaro.config import VivaroConfig

logger = logging.getLogger(__name__)

HEALTH_PATH = "/api/health"
PROBE_TIMEOUT = 1.0
KILL_TIMEOUT = 3.0


class ServerSupervisor:
    """Owns the lifecycle of a single API server subprocess."""

    def __init__(self, config: VivaroConfig) -> None:
        self.config = config
        self._process: asyncio.subprocess.Process | None = None
        self._output: list[str] = []
        self._readers: list[asyncio.Task] = []

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def health_url(self) -> str:
        return self.config.base_url + HEALTH_PATH

    @property
    def output(self) -> str:
        """Everything the child wrote to stdout/stderr so far."""
        return "".join(self._output)

    def _build_command(self) -> list[str]:
        return [sys.executable, "-m", "vivaro", "serve"]

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env["VIVARO_PORT"] = str(self.config.server.port)
        env["VIVARO_HOST"] = self.config.server.host
        env["VIVARO_DATA_DIR"] = str(self.config.data_dir)
        return env

    async def start(self) -> None:
        """Spawn the server process."""
        if self.is_alive:
            raise RuntimeError("Server process already running")

        self._output = []
        self._process = await asyncio.create_subprocess_exec(
            *self._build_command(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._build_env(),
        )
        self._readers = [
            asyncio.create_task(self._capture(stream, name))
            for stream, name in ((self._process.stdout, "stdout"), (self._process.stderr, "stderr"))
            if stream is not None
        ]
        logger.info("Server process started (pid=%d, port=%d)", self._process.pid, self.config.server.port)

    async def _capture(self, stream: asyncio.StreamReader, name: str) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            decoded = line.decode(errors="replace")
            self._output.append(decoded)
            logger.debug("[server %s] %s", name, decoded.rstrip())

    async def _probe(self, session: aiohttp.ClientSession) -> bool:
        try:
            async with session.get(self.health_url) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def wait_until_ready(self) -> bool:
        """Poll the health endpoint; False on timeout or if the child exits."""
        desktop = self.config.desktop
        timeout = aiohttp.ClientTimeout(total=PROBE_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for attempt in range(1, desktop.ready_attempts + 1):
                if not self.is_alive:
                    logger.error("Server process exited before becoming ready:\n%s", self.output)
                    return False
                if await self._probe(session):
                    logger.info("Server ready after %d attempt(s)", attempt)
                    return True
                await asyncio.sleep(desktop.ready_interval)

        logger.error(
            "Server did not become ready after %d attempts", desktop.ready_attempts
        )
        return False

    async def stop(self) -> None:
        """Terminate the server, force-killing it after the grace period."""
        if not self._process:
            return

        if self.is_alive:
            logger.info("Stopping server process (pid=%d)", self._process.pid)
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self.config.desktop.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("Server process didn't exit gracefully, killing")
                try:
                    self._process.kill()
                    await asyncio.wait_for(self._process.wait(), timeout=KILL_TIMEOUT)
                except (ProcessLookupError, asyncio.TimeoutError) as e:
                    logger.error("Failed to kill server process: %r", e)

        for reader in self._readers:
            reader.cancel()
        self._readers = []
        self._process = None
        logger.info("Server process stopped")
