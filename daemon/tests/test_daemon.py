"""Tests for daemon wiring and lifecycle."""

import asyncio

import aiohttp
import pytest

from sessiond.config import ArchiveConfig, Config, StorageConfig
from sessiond.daemon import Daemon, StartupError
from sessiond.protocols import ConnectionState


@pytest.fixture
def config(tmp_path):
    return Config(
        port=0,
        bind_address="127.0.0.1",
        storage=StorageConfig(
            sessions_dir=str(tmp_path / "sessions"),
            registry_file=str(tmp_path / "registry.json"),
        ),
    )


class TestDaemonStartup:
    """Test startup checks."""

    @pytest.mark.asyncio
    async def test_requires_transport(self, config, archive):
        daemon = Daemon(config, archive=archive)

        with pytest.raises(StartupError, match="No pairing transport"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_requires_archive_url(self, config, transport):
        daemon = Daemon(config, transport=transport)

        with pytest.raises(StartupError, match="upload URL"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_corrupt_registry(self, config, transport, archive, tmp_path):
        (tmp_path / "registry.json").write_text("{")
        daemon = Daemon(config, transport=transport, archive=archive)

        with pytest.raises(StartupError, match="registry"):
            await daemon.start()

    @pytest.mark.asyncio
    async def test_creates_http_archive(self, config, transport):
        """A configured upload URL yields an owned HTTP archive."""
        config.archive = ArchiveConfig(upload_url="http://127.0.0.1:9/upload")
        daemon = Daemon(config, transport=transport)

        await daemon.start()
        try:
            assert daemon.orchestrator.archive.upload_url == "http://127.0.0.1:9/upload"
        finally:
            await daemon._shutdown()


class TestDaemonLifecycle:
    """Test serving and shutdown."""

    @pytest.mark.asyncio
    async def test_pairs_over_http(self, config, transport, archive, handshake, tmp_path):
        """A started daemon serves /pair end to end."""
        daemon = Daemon(config, transport=transport, archive=archive)
        await daemon.start()
        base_url = f"http://127.0.0.1:{daemon.server.actual_port}"

        try:
            async with aiohttp.ClientSession() as http:
                async def pair():
                    async with http.post(f"{base_url}/pair", json={"number": "254700111222"}) as resp:
                        return resp.status, await resp.json()

                request = asyncio.create_task(pair())
                await asyncio.wait_for(handshake.listening.wait(), timeout=2.0)
                await handshake.emit_credentials()
                await handshake.emit(ConnectionState.OPEN)
                status, body = await request

                assert status == 200
                assert body["reference"] == "SID~AbC123#k3y"

                async with http.get(f"{base_url}/sessions") as resp:
                    listed = await resp.json()
                assert [s["reference"] for s in listed["sessions"]] == ["SID~AbC123#k3y"]
        finally:
            await daemon._shutdown()

        assert (tmp_path / "registry.json").exists()

    @pytest.mark.asyncio
    async def test_run_forever_stops(self, config, transport, archive):
        """stop() ends run_forever and shuts the server down."""
        daemon = Daemon(config, transport=transport, archive=archive)
        await daemon.start()

        runner = asyncio.create_task(daemon.run_forever())
        await asyncio.sleep(0)
        await daemon.stop()
        await asyncio.wait_for(runner, timeout=3.0)

        assert daemon.server is None

    @pytest.mark.asyncio
    async def test_shutdown_answers_pending_pairings(
        self, config, transport, archive, handshake
    ):
        """Pending callers get an answer when the daemon stops."""
        daemon = Daemon(config, transport=transport, archive=archive)
        await daemon.start()
        orchestrator = daemon.orchestrator
        orchestrator.pairing_code_delay = 10

        pending = asyncio.create_task(orchestrator.start_pairing("254700111222"))
        await asyncio.wait_for(handshake.listening.wait(), timeout=1.0)
        await daemon._shutdown()
        outcome = await pending

        assert outcome.error is not None
        assert outcome.error.value == "internal_error"
        assert handshake.closed
