"""Tests for ServerSupervisor (mocked subprocess and health probe)."""

import asyncio
import sys

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from vivaro.config import DesktopConfig, ServerConfig, VivaroConfig
from vivaro.supervisor import ServerSupervisor


class MockStream:
    def __init__(self, lines: list[bytes] | None = None):
        self._lines = list(lines or [])

    async def readline(self):
        if self._lines:
            return self._lines.pop(0)
        return b""


class MockProcess:
    """Mock asyncio.subprocess.Process that can refuse to exit on SIGTERM."""

    def __init__(self, stdout: list[bytes] | None = None, hang: bool = False):
        self.pid = 4242
        self.returncode = None
        self.stdout = MockStream(stdout)
        self.stderr = MockStream()
        self.hang = hang
        self.terminate = MagicMock(side_effect=self._on_terminate)
        self.kill = MagicMock(side_effect=self._on_kill)

    def _on_terminate(self):
        if not self.hang:
            self.returncode = -15

    def _on_kill(self):
        self.hang = False
        self.returncode = -9

    async def wait(self):
        while self.returncode is None:
            await asyncio.sleep(0.01)
        return self.returncode


@pytest.fixture
def config(tmp_path) -> VivaroConfig:
    return VivaroConfig(
        server=ServerConfig(port=3999),
        desktop=DesktopConfig(ready_attempts=3, ready_interval=0, stop_timeout=0.05),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def supervisor(config: VivaroConfig) -> ServerSupervisor:
    return ServerSupervisor(config)


def spawn(process: MockProcess):
    return patch(
        "vivaro.supervisor.asyncio.create_subprocess_exec",
        new=AsyncMock(return_value=process),
    )


class TestCommand:
    def test_command_and_env(self, supervisor: ServerSupervisor, config: VivaroConfig):
        assert supervisor._build_command() == [sys.executable, "-m", "vivaro", "serve"]
        env = supervisor._build_env()
        assert env["VIVARO_PORT"] == "3999"
        assert env["VIVARO_DATA_DIR"] == str(config.data_dir)
        assert supervisor.health_url == "http://localhost:3999/api/health"


class TestStart:
    @pytest.mark.asyncio
    async def test_start_and_capture_output(self, supervisor: ServerSupervisor):
        process = MockProcess(stdout=[b"listening\n"])
        with spawn(process) as create:
            await supervisor.start()
        assert supervisor.is_alive
        assert create.await_args.kwargs["env"]["VIVARO_PORT"] == "3999"

        await asyncio.gather(*supervisor._readers)
        assert "listening" in supervisor.output

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, supervisor: ServerSupervisor):
        with spawn(MockProcess()):
            await supervisor.start()
            with pytest.raises(RuntimeError):
                await supervisor.start()


class TestReadiness:
    @pytest.mark.asyncio
    async def test_ready_after_retries(self, supervisor: ServerSupervisor):
        with spawn(MockProcess()):
            await supervisor.start()
        supervisor._probe = AsyncMock(side_effect=[False, True])
        assert await supervisor.wait_until_ready() is True
        assert supervisor._probe.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout(self, supervisor: ServerSupervisor):
        with spawn(MockProcess()):
            await supervisor.start()
        supervisor._probe = AsyncMock(return_value=False)
        assert await supervisor.wait_until_ready() is False
        assert supervisor._probe.await_count == 3

    @pytest.mark.asyncio
    async def test_early_exit(self, supervisor: ServerSupervisor):
        process = MockProcess()
        with spawn(process):
            await supervisor.start()
        process.returncode = 1
        supervisor._probe = AsyncMock(return_value=True)
        assert await supervisor.wait_until_ready() is False
        supervisor._probe.assert_not_awaited()


class TestStop:
    @pytest.mark.asyncio
    async def test_graceful(self, supervisor: ServerSupervisor):
        process = MockProcess()
        with spawn(process):
            await supervisor.start()
        await supervisor.stop()
        process.terminate.assert_called_once()
        process.kill.assert_not_called()
        assert not supervisor.is_alive

    @pytest.mark.asyncio
    async def test_force_kill(self, supervisor: ServerSupervisor):
        process = MockProcess(hang=True)
        with spawn(process):
            await supervisor.start()
        await supervisor.stop()
        process.kill.assert_called_once()
        assert process.returncode == -9

    @pytest.mark.asyncio
    async def test_kill_failure_swallowed(self, supervisor: ServerSupervisor):
        process = MockProcess(hang=True)
        process.kill = MagicMock(side_effect=ProcessLookupError)
        with spawn(process):
            await supervisor.start()
        await supervisor.stop()  # must not raise
        assert supervisor._process is None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, supervisor: ServerSupervisor):
        await supervisor.stop()
