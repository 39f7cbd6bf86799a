"""HTTP server for sessiond.

Single aiohttp server handling all routes:
- /health - Health check
- /pair - Start pairing a number
- /sessions - List issued session references
- /clear-session - Remove a number's stored credentials
"""

import json
import logging
from typing import Any, Optional

from aiohttp import web

from sessiond.errors import PairingConflictError, StorageError, ValidationError
from sessiond.pairing.orchestrator import PairingOrchestrator
from sessiond.pairing.outcome import ErrorKind, Outcome
from sessiond.validation import normalize_subject_id

logger = logging.getLogger(__name__)


class PairingServer:
    """HTTP front end for the pairing orchestrator."""

    def __init__(
        self,
        orchestrator: PairingOrchestrator,
        host: str = "0.0.0.0",
        port: int = 3000,
    ):
        """Initialize server.

        Args:
            orchestrator: Orchestrator handling pairing requests.
            host: Host to bind to.
            port: Port to bind to (0 for any free port).
        """
        self.orchestrator = orchestrator
        self.host = host
        self.port = port

        self._app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def app(self) -> web.Application:
        """Get the aiohttp application for testing."""
        return self._app

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self._app.router.add_get("/health", self._handle_health)
        self._app.router.add_post("/pair", self._handle_pair)
        self._app.router.add_get("/sessions", self._handle_list_sessions)
        self._app.router.add_post("/clear-session", self._handle_clear_session)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({"status": "ok"})

    async def _handle_pair(self, request: web.Request) -> web.Response:
        """Start pairing and reply with the committed outcome."""
        number = await self._read_number(request)
        if number is None:
            return self._outcome_response(
                Outcome.failed(ErrorKind.INVALID_INPUT, "Body must be JSON with a 'number'")
            )

        try:
            outcome = await self.orchestrator.start_pairing(number)
        except Exception as e:
            logger.exception("Unhandled pairing error")
            outcome = Outcome.failed(ErrorKind.INTERNAL_ERROR, str(e))

        return self._outcome_response(outcome)

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        """List issued session references in insertion order."""
        try:
            records = await self.orchestrator.list_sessions()
        except StorageError as e:
            logger.error(f"Failed to list sessions: {e}")
            return self._outcome_response(
                Outcome.failed(ErrorKind.INTERNAL_ERROR, "Failed to read session registry")
            )

        return web.json_response({"sessions": [r.to_dict() for r in records]})

    async def _handle_clear_session(self, request: web.Request) -> web.Response:
        """Remove stored credentials for a number."""
        number = await self._read_number(request)
        if number is None:
            return self._outcome_response(
                Outcome.failed(ErrorKind.INVALID_INPUT, "Body must be JSON with a 'number'")
            )

        try:
            subject_id = normalize_subject_id(
                number, self.orchestrator.min_subject_digits
            )
            removed = await self.orchestrator.clear_session(subject_id)
        except ValidationError as e:
            return self._outcome_response(Outcome.failed(ErrorKind.INVALID_INPUT, str(e)))
        except PairingConflictError as e:
            return self._outcome_response(Outcome.failed(ErrorKind.CONFLICT, str(e)))
        except StorageError as e:
            logger.error(f"Failed to clear session: {e}")
            return self._outcome_response(
                Outcome.failed(ErrorKind.INTERNAL_ERROR, "Failed to clear session")
            )

        return web.json_response(
            {"status": "cleared", "subject_id": subject_id, "removed": removed}
        )

    async def _read_number(self, request: web.Request) -> Optional[Any]:
        """Read the "number" field from a JSON body, None if absent."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(body, dict):
            return None
        return body.get("number")

    def _outcome_response(self, outcome: Outcome) -> web.Response:
        """Create JSON response for an outcome."""
        return web.json_response(outcome.to_dict(), status=outcome.http_status)

    @property
    def actual_port(self) -> int:
        """Get the actual bound port (useful when port=0)."""
        if self._site and self._site._server:
            sockets = self._site._server.sockets
            if sockets:
                return sockets[0].getsockname()[1]
        return self.port

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        logger.info(f"HTTP server started on {self.host}:{self.actual_port}")

    async def close(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("HTTP server closed")
