"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import signal
from typing import Optional

from sessiond.archive import HttpBlobArchive
from sessiond.config import Config
from sessiond.credentials import CredentialStore
from sessiond.errors import StorageError, TransportError
from sessiond.pairing.orchestrator import PairingOrchestrator
from sessiond.protocols import BlobArchive, PairingTransport
from sessiond.registry import JsonSessionRegistry
from sessiond.server import PairingServer
from sessiond.transport_loader import create_transport

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during daemon startup."""

    pass


class Daemon:
    """Main daemon wiring storage, transport, orchestrator, and HTTP server.

    Responsibilities:
    - Resolve the pairing transport once at startup
    - Load the session registry
    - Create the credential archive client
    - Serve the HTTP API
    - Handle graceful shutdown
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[PairingTransport] = None,
        archive: Optional[BlobArchive] = None,
        registry: Optional[JsonSessionRegistry] = None,
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration.
            transport: Optional injected transport (for testing).
            archive: Optional injected archive (for testing).
            registry: Optional injected registry (for testing).
        """
        self._config = config
        self._running = False

        self._transport = transport
        self._archive = archive
        self._owned_archive: Optional[HttpBlobArchive] = None
        self._registry = registry

        self._orchestrator: Optional[PairingOrchestrator] = None
        self._server: Optional[PairingServer] = None

    @property
    def orchestrator(self) -> Optional[PairingOrchestrator]:
        """The pairing orchestrator (set once started)."""
        return self._orchestrator

    @property
    def server(self) -> Optional[PairingServer]:
        """The HTTP server (set once started)."""
        return self._server

    async def start(self) -> None:
        """Start the daemon.

        Raises:
            StartupError: If the transport, archive, or registry cannot be set up.
        """
        logger.info("Starting daemon...")

        self._initialize_transport()
        await self._initialize_stores()
        await self._initialize_archive()

        credential_store = CredentialStore(
            self._config.storage.sessions_dir,
            prefix=self._config.storage.session_prefix,
        )
        self._orchestrator = PairingOrchestrator.from_config(
            self._config.pairing,
            transport=self._transport,
            credential_store=credential_store,
            archive=self._archive,
            registry=self._registry,
        )

        self._server = PairingServer(
            self._orchestrator,
            host=self._config.bind_address,
            port=self._config.port,
        )
        await self._server.start()

        self._setup_signals()

        self._running = True
        logger.info("Daemon started successfully")

    def _initialize_transport(self) -> None:
        """Resolve the configured transport unless one was injected."""
        if self._transport is not None:
            return
        try:
            self._transport = create_transport(self._config)
        except TransportError as e:
            raise StartupError(str(e)) from e

    async def _initialize_stores(self) -> None:
        """Load the session registry."""
        if self._registry is None:
            self._registry = JsonSessionRegistry(self._config.storage.registry_file)
        try:
            await self._registry.load()
        except StorageError as e:
            raise StartupError(str(e)) from e
        logger.debug(f"Session registry at {self._registry.path}")

    async def _initialize_archive(self) -> None:
        """Create the HTTP archive client unless one was injected."""
        if self._archive is not None:
            return
        if not self._config.archive.upload_url:
            raise StartupError("No archive upload URL configured (set 'archive.upload_url')")

        self._owned_archive = HttpBlobArchive(
            self._config.archive.upload_url,
            request_timeout=self._config.archive.request_timeout,
        )
        await self._owned_archive.start()
        self._archive = self._owned_archive

    async def run_forever(self) -> None:
        """Run daemon until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Stop the daemon gracefully."""
        self._running = False

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop()),
                )
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        logger.info("Shutting down daemon...")

        if self._server:
            await self._server.close()
            self._server = None

        if self._orchestrator:
            await self._orchestrator.stop()

        if self._owned_archive:
            await self._owned_archive.close()
            self._owned_archive = None

        logger.info("Daemon shutdown complete")
