"""Pairing orchestrator drives the complete pairing flow.

For each request it opens a handshake through the transport, obtains a
pairing code or waits for the connection to open, persists and archives
the resulting credentials, records the issued reference, and delivers
exactly one reply to the caller.
"""

import asyncio
import logging
import re
from typing import Coroutine, Dict, List, Optional

from sessiond.archive import DEFAULT_REFERENCE_PREFIX, derive_reference
from sessiond.config import PairingConfig
from sessiond.credentials import CredentialStore
from sessiond.errors import PairingConflictError, StorageError, ValidationError
from sessiond.logging import mask_subject
from sessiond.pairing.outcome import ErrorKind, Outcome, ResponseSlot
from sessiond.pairing.session import PairingRequest, PairingSession, PairingState
from sessiond.protocols import (
    BlobArchive,
    ConnectionState,
    ConnectionUpdate,
    PairingTransport,
    SessionRegistry,
)
from sessiond.registry import ArchiveRecord
from sessiond.validation import DEFAULT_MIN_SUBJECT_DIGITS, normalize_subject_id

logger = logging.getLogger(__name__)

# Disconnect code transports report for a logged-out account
LOGGED_OUT_STATUS_CODE = 401

_LOGGED_OUT_PATTERN = re.compile(r"logged[\s_-]?out", re.IGNORECASE)
_INVALID_NUMBER_PATTERN = re.compile(r"phone|number|invalid", re.IGNORECASE)

# States in which an unfinished handshake may be abandoned
_ABANDONABLE_STATES = (
    PairingState.INIT,
    PairingState.AWAITING_REGISTRATION,
    PairingState.TIMED_OUT,
)


class PairingOrchestrator:
    """Orchestrates pairing sessions, one per subject at a time.

    Several sources race to answer the caller: the pairing-code loop,
    the connection listener, and the safety timer. Each session's
    ResponseSlot keeps the first outcome and drops the rest, while the
    handshake's side effects (archival, registry append) still run to
    completion after the caller has been answered.

    A caller answered "waiting" may re-request: once the current slot is
    filled, a new request for the same subject attaches a fresh slot to
    the running handshake instead of being rejected as a conflict.
    """

    def __init__(
        self,
        transport: PairingTransport,
        credential_store: CredentialStore,
        archive: BlobArchive,
        registry: SessionRegistry,
        pairing_code_attempts: int = 3,
        pairing_code_delay: float = 1.0,
        response_timeout: float = 30.0,
        handshake_timeout: float = 300.0,
        min_subject_digits: int = DEFAULT_MIN_SUBJECT_DIGITS,
        reference_prefix: str = DEFAULT_REFERENCE_PREFIX,
        notify_on_pair: bool = True,
    ):
        """Initialize pairing orchestrator.

        Args:
            transport: Opens handshakes against the chat network.
            credential_store: Local storage for handshake credentials.
            archive: Remote storage for credential blobs.
            registry: Append-only record of issued references.
            pairing_code_attempts: Maximum pairing-code requests per session.
            pairing_code_delay: Pause before each pairing-code request.
            response_timeout: Seconds before the caller is answered "waiting".
            handshake_timeout: Seconds before an unopened handshake is abandoned.
            min_subject_digits: Minimum digits in a subject identifier.
            reference_prefix: Namespace tag for reference codes.
            notify_on_pair: Send the reference to the subject once paired.
        """
        self.transport = transport
        self.credential_store = credential_store
        self.archive = archive
        self.registry = registry
        self.pairing_code_attempts = pairing_code_attempts
        self.pairing_code_delay = pairing_code_delay
        self.response_timeout = response_timeout
        self.handshake_timeout = handshake_timeout
        self.min_subject_digits = min_subject_digits
        self.reference_prefix = reference_prefix
        self.notify_on_pair = notify_on_pair

        self.sessions: Dict[str, PairingSession] = {}

    @classmethod
    def from_config(
        cls,
        config: PairingConfig,
        transport: PairingTransport,
        credential_store: CredentialStore,
        archive: BlobArchive,
        registry: SessionRegistry,
    ) -> "PairingOrchestrator":
        """Create an orchestrator from the pairing config section."""
        return cls(
            transport,
            credential_store,
            archive,
            registry,
            pairing_code_attempts=config.pairing_code_attempts,
            pairing_code_delay=config.pairing_code_delay,
            response_timeout=config.response_timeout,
            handshake_timeout=config.handshake_timeout,
            min_subject_digits=config.min_subject_digits,
            reference_prefix=config.reference_prefix,
            notify_on_pair=config.notify_on_pair,
        )

    def get_session(self, subject_id: str) -> Optional[PairingSession]:
        """Get the in-flight session for a subject."""
        return self.sessions.get(subject_id)

    def active_subjects(self) -> List[str]:
        """Subjects with a pairing in flight."""
        return list(self.sessions.keys())

    # =========================================================================
    # Public operations
    # =========================================================================

    async def start_pairing(self, raw_subject_id: object) -> Outcome:
        """Start pairing a subject and wait for the caller-facing outcome.

        Args:
            raw_subject_id: Phone number as supplied by the caller.

        Returns:
            The single outcome committed for this request.
        """
        try:
            subject_id = normalize_subject_id(raw_subject_id, self.min_subject_digits)
        except ValidationError as e:
            return Outcome.failed(ErrorKind.INVALID_INPUT, str(e))

        session = self.sessions.get(subject_id)
        if session is not None:
            if not session.slot.filled:
                logger.warning(f"Pairing already in flight for {mask_subject(subject_id)}")
                return Outcome.failed(
                    ErrorKind.CONFLICT, "Pairing already in progress for this number"
                )
            slot = self._attach_caller(session)
        else:
            request = PairingRequest(
                subject_id=subject_id,
                session_path=self.credential_store.session_path(subject_id),
            )
            session = PairingSession(request=request)
            self.sessions[subject_id] = session
            slot = session.slot

            self._spawn(session, self._handshake_timer(session))
            self._spawn(session, self._run_handshake(session))
            logger.info(f"Pairing started for {mask_subject(subject_id)}")

        safety_timer = self._spawn(session, self._safety_timer(session, slot))

        outcome = await slot.wait()
        safety_timer.cancel()

        logger.info(
            f"Replied to pairing for {mask_subject(subject_id)}: "
            f"{outcome.error.value if outcome.error else outcome.status.value}"
        )
        return outcome

    async def clear_session(self, raw_subject_id: object) -> bool:
        """Delete a subject's stored credentials.

        Returns:
            True if stored credentials were removed.

        Raises:
            ValidationError: If the identifier is malformed.
            PairingConflictError: If a pairing for the subject is in flight.
        """
        subject_id = normalize_subject_id(raw_subject_id, self.min_subject_digits)
        if subject_id in self.sessions:
            raise PairingConflictError(subject_id)
        return await self.credential_store.clear(subject_id)

    async def list_sessions(self) -> List[ArchiveRecord]:
        """All issued references in insertion order."""
        return await self.registry.list()

    async def stop(self) -> None:
        """Tear down every in-flight session."""
        for session in list(self.sessions.values()):
            await self._fail(
                session, ErrorKind.INTERNAL_ERROR, "Service is shutting down"
            )
        logger.info("Pairing orchestrator stopped")

    # =========================================================================
    # Handshake flow
    # =========================================================================

    def _attach_caller(self, session: PairingSession) -> ResponseSlot:
        """Give a re-request a fresh reply slot on the in-flight handshake.

        The previous caller was already answered. A code or registration
        already known for the handshake is replayed at once; otherwise the
        new caller waits like the first one did.
        """
        slot = ResponseSlot()
        session.slot = slot
        logger.info(f"Caller re-attached to pairing for {mask_subject(session.subject_id)}")

        if session.pairing_code:
            slot.offer(Outcome.pairing_code_sent(session.pairing_code))
        elif session.registered:
            slot.offer(Outcome.already_registered())
        return slot

    async def _run_handshake(self, session: PairingSession) -> None:
        """Open the handshake, register listeners, and branch on registration."""
        try:
            handshake = await self.transport.open(session.request)
        except Exception as e:
            await self._fail(
                session, ErrorKind.INTERNAL_ERROR, f"Failed to open handshake: {e}"
            )
            return

        session.handshake = handshake

        async def on_credentials(data: bytes) -> None:
            await self._on_credentials(session, data)

        async def on_update(update: ConnectionUpdate) -> None:
            await self._on_connection_update(session, update)

        try:
            handshake.on_credentials_update(on_credentials)
            handshake.on_connection_update(on_update)
            session.registered = handshake.registered
            session.transition_to(PairingState.AWAITING_REGISTRATION)

            if session.registered:
                logger.info(f"{mask_subject(session.subject_id)} is already registered")
                session.slot.offer(Outcome.already_registered())
            else:
                await self._acquire_pairing_code(session)
        except Exception as e:
            logger.exception(f"Handshake error for {mask_subject(session.subject_id)}")
            await self._fail(session, ErrorKind.INTERNAL_ERROR, str(e))

    async def _acquire_pairing_code(self, session: PairingSession) -> None:
        """Request a pairing code, pacing and retrying each attempt."""
        attempts = self.pairing_code_attempts
        masked = mask_subject(session.subject_id)

        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.pairing_code_delay)

            if session.opened or session.is_terminal() or session.handshake is None:
                return

            try:
                code = await session.handshake.request_pairing_code(session.subject_id)
            except Exception as e:
                logger.warning(
                    f"Pairing code attempt {attempt}/{attempts} failed for {masked}: {e}"
                )
                continue

            if code:
                session.pairing_code = code
                if session.slot.offer(Outcome.pairing_code_sent(code)):
                    logger.info(f"Pairing code issued for {masked} on attempt {attempt}")
                return

            logger.warning(
                f"Pairing code attempt {attempt}/{attempts} returned no code for {masked}"
            )

        logger.error(f"No pairing code for {masked} after {attempts} attempts")
        await self._fail(
            session,
            ErrorKind.PAIRING_CODE_GENERATION_FAILED,
            f"No pairing code after {attempts} attempts",
        )

    async def _on_credentials(self, session: PairingSession, data: bytes) -> None:
        """Persist a changed credential blob."""
        try:
            await self.credential_store.write(session.request.session_path, data)
        except StorageError as e:
            logger.error(
                f"Failed to persist credentials for {mask_subject(session.subject_id)}: {e}"
            )

    async def _on_connection_update(
        self, session: PairingSession, update: ConnectionUpdate
    ) -> None:
        """Handle a connection-state change."""
        try:
            if update.state is ConnectionState.OPEN:
                await self._on_open(session)
            elif update.state is ConnectionState.CLOSED:
                await self._on_closed(session, update)
            else:
                logger.debug(f"Connecting: {mask_subject(session.subject_id)}")
        except Exception as e:
            logger.exception(
                f"Connection update error for {mask_subject(session.subject_id)}"
            )
            await self._fail(session, ErrorKind.INTERNAL_ERROR, str(e))

    async def _on_open(self, session: PairingSession) -> None:
        """Archive credentials, record the reference, and reply "paired"."""
        masked = mask_subject(session.subject_id)

        if session.opened or not session.can_transition_to(PairingState.HANDSHAKE_OPEN):
            logger.debug(f"Ignoring open event for {masked} in state {session.state.name}")
            return
        session.opened = True
        session.transition_to(PairingState.HANDSHAKE_OPEN)
        logger.info(f"Connected: {masked}")

        try:
            credentials = await self.credential_store.read(session.request.session_path)
        except StorageError as e:
            await self._fail(session, ErrorKind.CREDENTIAL_MISSING, str(e))
            return

        if credentials is None:
            await self._fail(
                session,
                ErrorKind.CREDENTIAL_MISSING,
                "No credentials were persisted for this session",
            )
            return

        try:
            archive_link = await self.archive.upload(
                credentials, f"{session.subject_id}.json"
            )
        except Exception as e:
            await self._fail(session, ErrorKind.UPLOAD_FAILED, str(e))
            return

        reference = derive_reference(archive_link, self.reference_prefix)
        record = ArchiveRecord(
            reference=reference,
            subject_id=session.subject_id,
            archive_link=archive_link,
        )

        try:
            await self.registry.append(record)
        except StorageError as e:
            await self._fail(
                session, ErrorKind.INTERNAL_ERROR, f"Failed to record session: {e}"
            )
            return

        session.transition_to(PairingState.ARCHIVED)
        logger.info(f"Credentials archived for {masked}")

        await self._notify(session, reference)

        if not session.slot.offer(Outcome.paired(reference, archive_link)):
            logger.debug(
                f"Caller for {masked} already answered; paired result recorded only"
            )

        session.transition_to(PairingState.DONE)
        await self._teardown(session)

    async def _on_closed(
        self, session: PairingSession, update: ConnectionUpdate
    ) -> None:
        """Classify a connection closure."""
        masked = mask_subject(session.subject_id)
        reason = update.reason or ""

        if session.is_terminal():
            return

        if session.state in (PairingState.HANDSHAKE_OPEN, PairingState.ARCHIVED):
            logger.warning(f"Connection closed for {masked} during archival: {reason}")
            return

        if (
            update.status_code == LOGGED_OUT_STATUS_CODE
            or _LOGGED_OUT_PATTERN.search(reason)
        ):
            await self._fail(
                session,
                ErrorKind.LOGGED_OUT,
                "The account appears logged out. Clear the stored session and pair again.",
            )
        elif _INVALID_NUMBER_PATTERN.search(reason):
            await self._fail(
                session,
                ErrorKind.INVALID_NUMBER,
                "Check the number is correct and registered on the chat network.",
            )
        else:
            logger.warning(f"Connection closed for {masked}: {reason or 'unknown reason'}")

    async def _notify(self, session: PairingSession, reference: str) -> None:
        """Send the reference to the subject. Failures are only logged."""
        if not self.notify_on_pair or session.handshake is None:
            return
        try:
            await session.handshake.send_text(
                session.subject_id, f"Session paired. Reference: {reference}"
            )
        except Exception as e:
            logger.warning(
                f"Could not send pairing notice to {mask_subject(session.subject_id)}: {e}"
            )

    # =========================================================================
    # Timers
    # =========================================================================

    async def _safety_timer(self, session: PairingSession, slot: ResponseSlot) -> None:
        """Answer "waiting" if nothing else answered this caller in time."""
        await asyncio.sleep(self.response_timeout)

        if slot.offer(Outcome.waiting()):
            logger.info(
                f"No outcome for {mask_subject(session.subject_id)} "
                f"after {self.response_timeout}s, replied waiting"
            )
            if session.state is PairingState.AWAITING_REGISTRATION:
                session.transition_to(PairingState.TIMED_OUT)

    async def _handshake_timer(self, session: PairingSession) -> None:
        """Abandon a handshake that never opened."""
        await asyncio.sleep(self.handshake_timeout)

        if self.sessions.get(session.subject_id) is not session:
            return
        if session.opened or session.state not in _ABANDONABLE_STATES:
            return

        logger.info(f"Pairing expired for {mask_subject(session.subject_id)}")
        session.slot.offer(Outcome.waiting())
        session.transition_to(PairingState.FAILED)
        await self._teardown(session)

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def _fail(
        self,
        session: PairingSession,
        error: ErrorKind,
        details: Optional[str] = None,
    ) -> None:
        """Offer a terminal error and tear the session down."""
        masked = mask_subject(session.subject_id)

        if session.slot.offer(Outcome.failed(error, details)):
            logger.warning(f"Pairing failed for {masked}: {error.value} ({details})")
        else:
            logger.warning(
                f"Pairing for {masked} failed after reply was sent: {error.value} ({details})"
            )

        if not session.is_terminal():
            session.transition_to(PairingState.FAILED)
        await self._teardown(session)

    async def _teardown(self, session: PairingSession) -> None:
        """Release a session: stop its tasks and close its handshake."""
        if self.sessions.get(session.subject_id) is session:
            del self.sessions[session.subject_id]

        current = asyncio.current_task()
        for task in list(session.tasks):
            if task is not current:
                task.cancel()

        handshake, session.handshake = session.handshake, None
        if handshake is not None:
            try:
                await handshake.close()
            except Exception as e:
                logger.warning(
                    f"Error closing handshake for {mask_subject(session.subject_id)}: {e}"
                )

        logger.debug(f"Pairing session released: {mask_subject(session.subject_id)}")

    def _spawn(self, session: PairingSession, coro: Coroutine) -> asyncio.Task:
        """Run a coroutine as a task owned by the session."""
        task = asyncio.create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task
