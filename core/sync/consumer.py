"""
Change Stream Consumer.

Tails the Document Store's change stream, dispatches each event to the
Projector, and tracks the Resume Position so a reconnect continues where
the previous stream stopped.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TYPE_CHECKING

from ..errors import ConsumerFatalError, DocumentStoreError, ProjectionError, ResumeTokenExpiredError
from .events import ChangeEvent, OperationType
from .projector import Projector
from .resume import InMemoryResumeTokenStore, ResumeTokenStore
from .retry import DeadLetterLog

if TYPE_CHECKING:
    from ..source.client import ChangeStreamCursor, DocumentStoreClient

logger = logging.getLogger(__name__)


UPSERT_OPERATIONS = {OperationType.INSERT, OperationType.UPDATE, OperationType.REPLACE}


class ConsumerState(Enum):
    """Lifecycle states of the consumer"""
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class ConsumerMetrics:
    """Counters for the live change stream"""

    # Event processing
    events_received: int = 0
    events_processed: int = 0
    events_failed: int = 0
    events_skipped: int = 0
    lookups_missed: int = 0

    # Stream health
    reconnects: int = 0
    resume_fallbacks: int = 0
    invalidations: int = 0
    consecutive_connect_failures: int = 0

    # Error tracking
    last_event_time: Optional[datetime] = None
    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


class ChangeStreamConsumer:
    """
    Single-task change stream processor.

    Events are handled strictly one at a time in stream order, which keeps
    per-document ordering without any locking. A failed projection is
    logged and recorded, and the consumer moves on to the next event.
    """

    def __init__(
        self,
        store: 'DocumentStoreClient',
        projector: Projector,
        resume_store: Optional[ResumeTokenStore] = None,
        reconnect_delay: float = 5.0,
        max_connect_attempts: int = 5,
        dead_letters: Optional[DeadLetterLog] = None
    ):
        """
        Initialize the consumer.

        Args:
            store: Document Store client providing change streams
            projector: Projector receiving upserts and deletes
            resume_store: Resume Position storage (in-memory if None)
            reconnect_delay: Seconds to wait before reconnecting
            max_connect_attempts: Consecutive failed stream opens before giving up
            dead_letters: Record of failed projections
        """
        self.store = store
        self.projector = projector
        self.resume_store = resume_store or InMemoryResumeTokenStore()
        self.reconnect_delay = reconnect_delay
        self.max_connect_attempts = max_connect_attempts
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterLog()

        self.state = ConsumerState.CONNECTING
        self.metrics = ConsumerMetrics()

        self._resume_token: Optional[Dict[str, Any]] = None
        self._stop_event = asyncio.Event()

    @property
    def resume_token(self) -> Optional[Dict[str, Any]]:
        """Resume Position after the last handled event"""
        return self._resume_token

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stop accepting events; an in-flight projection still completes"""
        if not self._stop_event.is_set():
            logger.info("Stopping change stream consumer")
        self._stop_event.set()

    async def run(self) -> None:
        """
        Consume the change stream until stopped.

        Raises:
            ConsumerFatalError: if a stream cannot be opened after
                ``max_connect_attempts`` consecutive tries
        """
        self._resume_token = await self.resume_store.load()
        if self._resume_token is not None:
            logger.info("Resuming change stream from stored resume position")

        try:
            while not self._stop_event.is_set():
                self._set_state(ConsumerState.CONNECTING)
                cursor = await self._connect()
                if cursor is None:
                    break

                self._set_state(ConsumerState.STREAMING)
                try:
                    await self._stream(cursor)
                except ResumeTokenExpiredError as e:
                    await self._fall_back_to_tail(e)
                    self._record_stream_error(e)
                except Exception as e:
                    self._record_stream_error(e)
                finally:
                    await cursor.close()

                if self._stop_event.is_set():
                    break

                if self.state == ConsumerState.ERROR:
                    self._set_state(ConsumerState.RECONNECTING)
                    self.metrics.reconnects += 1
                    logger.info(f"Attempting to restart change stream in {self.reconnect_delay:.1f}s")
                    await self._sleep(self.reconnect_delay)
        finally:
            self._set_state(ConsumerState.CLOSED)
            logger.info("Change stream consumer closed")

    async def _connect(self) -> Optional['ChangeStreamCursor']:
        """Open a stream, falling back to the tail if the token is stale"""
        failures = 0
        while not self._stop_event.is_set():
            try:
                cursor = await self.store.open_change_stream(resume_after=self._resume_token)
                self.metrics.consecutive_connect_failures = 0
                return cursor
            except ResumeTokenExpiredError as e:
                if self._resume_token is not None:
                    await self._fall_back_to_tail(e)
                    continue
                error = e
            except Exception as e:
                error = e

            failures += 1
            self.metrics.consecutive_connect_failures = failures
            self.metrics.last_error_message = str(error)
            self.metrics.last_error_time = datetime.now()
            logger.error(
                f"Failed to open change stream (attempt {failures}/{self.max_connect_attempts}): {error}"
            )

            if failures >= self.max_connect_attempts:
                raise ConsumerFatalError(
                    f"Could not open change stream after {failures} attempts: {error}"
                ) from error

            self._set_state(ConsumerState.RECONNECTING)
            await self._sleep(self.reconnect_delay)
            self._set_state(ConsumerState.CONNECTING)
        return None

    async def _stream(self, cursor: 'ChangeStreamCursor') -> None:
        """Handle events until stopped, invalidated, or the stream fails"""
        while not self._stop_event.is_set():
            change = await cursor.next_change()
            if change is None or self._stop_event.is_set():
                continue

            self.metrics.events_received += 1
            self.metrics.last_event_time = datetime.now()

            try:
                event = ChangeEvent.from_change(change)
            except ValueError as e:
                self.metrics.events_skipped += 1
                logger.warning(f"Skipping malformed change event: {e}")
                token = change.get('_id') if isinstance(change, dict) else None
                if isinstance(token, dict) and token:
                    await self._advance(token)
                continue

            logger.info(f"Change detected: {event.operation_type} on document {event.document_id}")
            await self.handle_event(event)

            if event.operation == OperationType.INVALIDATE:
                return

            await self._advance(event.resume_token)

    async def handle_event(self, event: ChangeEvent) -> None:
        """
        Dispatch one change event to the Projector.

        Projection failures are logged and recorded as dead letters; they
        never propagate. Document Store lookup failures do propagate and
        are treated as stream errors.
        """
        operation = event.operation
        doc_id = event.document_id

        if operation in UPSERT_OPERATIONS:
            document = event.full_document
            if document is None:
                document = await self.store.find_by_id(event.document_key)
            if document is None:
                # Deleted before the lookup; the delete event follows
                self.metrics.lookups_missed += 1
                logger.debug(f"Document {doc_id} no longer exists, skipping {event.operation_type}")
                return
            await self._project('upsert', doc_id, self.projector.project_upsert, doc_id, document)

        elif operation == OperationType.DELETE:
            await self._project('delete', doc_id, self.projector.project_delete, doc_id)

        elif operation == OperationType.INVALIDATE:
            self.metrics.invalidations += 1
            logger.warning("Change stream invalidated, reopening from the current tail")
            self._resume_token = None
            await self.resume_store.clear()

        else:
            self.metrics.events_skipped += 1
            logger.warning(f"Unhandled operation type: {event.operation_type}")

    async def _project(
        self,
        operation: str,
        doc_id: Optional[str],
        func: Callable[..., Awaitable[Any]],
        *args: Any
    ) -> None:
        try:
            await func(*args)
            self.metrics.events_processed += 1
        except ProjectionError as e:
            self._record_failure(operation, doc_id, str(e))
        except DocumentStoreError:
            raise
        except Exception as e:
            self._record_failure(operation, doc_id, f"{type(e).__name__}: {e}")

    def _record_failure(self, operation: str, doc_id: Optional[str], error: str) -> None:
        self.metrics.events_failed += 1
        self.metrics.last_error_message = error
        self.metrics.last_error_time = datetime.now()
        self.dead_letters.record(doc_id, operation, error)
        logger.error(f"Failed to project {operation} of document {doc_id}: {error}")

    async def _advance(self, token: Dict[str, Any]) -> None:
        self._resume_token = token
        try:
            await self.resume_store.save(token)
        except OSError as e:
            logger.warning(f"Failed to persist resume position: {e}")

    async def _fall_back_to_tail(self, error: Exception) -> None:
        self.metrics.resume_fallbacks += 1
        logger.warning(
            f"Resume position rejected ({error}); resuming from the current tail. "
            f"Changes made while disconnected may be missing from the index, run a backfill to repair"
        )
        self._resume_token = None
        await self.resume_store.clear()

    def _record_stream_error(self, error: Exception) -> None:
        self._set_state(ConsumerState.ERROR)
        self.metrics.last_error_message = str(error)
        self.metrics.last_error_time = datetime.now()
        logger.error(f"Change stream error ({type(error).__name__}): {error}")

    def _set_state(self, state: ConsumerState) -> None:
        if state != self.state:
            logger.debug(f"Consumer state {self.state.value} -> {state.value}")
        self.state = state

    async def _sleep(self, delay: float) -> None:
        """Sleep unless stopped first"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information about the consumer.

        Returns:
            Dictionary with status information
        """
        return {
            "state": self.state.value,
            "has_resume_token": self._resume_token is not None,
            "events_received": self.metrics.events_received,
            "events_processed": self.metrics.events_processed,
            "events_failed": self.metrics.events_failed,
            "events_skipped": self.metrics.events_skipped,
            "lookups_missed": self.metrics.lookups_missed,
            "reconnects": self.metrics.reconnects,
            "resume_fallbacks": self.metrics.resume_fallbacks,
            "invalidations": self.metrics.invalidations,
            "dead_letters": len(self.dead_letters),
            "last_event_time": self.metrics.last_event_time.isoformat() if self.metrics.last_event_time else None,
            "last_error": self.metrics.last_error_message,
            "last_error_time": self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None
        }
