"""Tests for the server daemon (PID file, migration, lifecycle)."""

import asyncio
import json
import os
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from vivaro.config import VivaroConfig
from vivaro.daemon import VivaroDaemon


@pytest.fixture
def config(tmp_path: Path) -> VivaroConfig:
    return VivaroConfig(data_dir=tmp_path / "data", pid_file=tmp_path / "run" / "vivaro.pid")


class TestPidFile:
    def test_stale_pid_removed(self, config: VivaroConfig):
        config.pid_file.parent.mkdir(parents=True)
        config.pid_file.write_text("12345")
        daemon = VivaroDaemon(config)
        with patch("vivaro.daemon.os.kill", side_effect=ProcessLookupError):
            daemon._check_existing()
        assert not config.pid_file.exists()

    def test_garbage_pid_removed(self, config: VivaroConfig):
        config.pid_file.parent.mkdir(parents=True)
        config.pid_file.write_text("not-a-pid")
        VivaroDaemon(config)._check_existing()
        assert not config.pid_file.exists()

    def test_live_pid_exits(self, config: VivaroConfig):
        config.pid_file.parent.mkdir(parents=True)
        config.pid_file.write_text(str(os.getpid()))
        with pytest.raises(SystemExit):
            VivaroDaemon(config)._check_existing()
        assert config.pid_file.exists()

    def test_write_and_remove(self, config: VivaroConfig):
        daemon = VivaroDaemon(config)
        daemon._write_pid()
        assert config.pid_file.read_text() == str(os.getpid())
        daemon._remove_pid()
        assert not config.pid_file.exists()


class TestRun:
    @pytest.mark.asyncio
    async def test_serves_until_shutdown(self, config: VivaroConfig):
        config.data_dir.mkdir(parents=True)
        (config.data_dir / "clients.json").write_text(json.dumps([{"id": "1", "name": "Acme"}]))

        server = MagicMock()
        server.start = AsyncMock()
        server.stop = AsyncMock()
        daemon = VivaroDaemon(config)

        with patch("vivaro.daemon.VivaroServer", return_value=server), \
                patch.object(VivaroDaemon, "_setup_signals"):
            task = asyncio.create_task(daemon.run())
            await asyncio.sleep(0.05)
            assert config.pid_file.exists()
            server.start.assert_awaited_once()

            daemon.shutdown()
            await asyncio.wait_for(task, timeout=2)

        server.stop.assert_awaited_once()
        assert not config.pid_file.exists()
        assert (config.data_dir / "clients.json.backup").exists()
        assert (config.data_dir / "acme" / "client.json").exists()
