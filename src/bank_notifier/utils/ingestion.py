"""Ingestion cycle orchestration with single-flight protection."""

import logging
import threading
import time
from typing import Any, Dict, Optional

from ..mailbox.base import TransientProviderError
from ..models.core import AssemblyStatus, CycleResult, CycleStatus, RawMessage
from ..parsers.assembler import TransactionAssembler
from .error_handler import ErrorCategory, ErrorHandler, handle_message_error, handle_provider_error
from .processing_tracker import ProcessingTracker
from .sync_controller import SyncBatch, SyncController, SyncMode
from .transaction_store import TransactionStore


logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """Runs one ingestion cycle at a time.

    A cycle resolves the start position, fetches the delta, assembles and
    stores each notification in order, then advances the cursor. A trigger
    arriving while a cycle runs is rejected, not queued.
    """

    def __init__(self,
                 controller: SyncController,
                 assembler: TransactionAssembler,
                 store: TransactionStore,
                 error_handler: Optional[ErrorHandler] = None,
                 tracker: Optional[ProcessingTracker] = None):
        self.controller = controller
        self.assembler = assembler
        self.store = store
        self.error_handler = error_handler
        self.tracker = tracker or ProcessingTracker()
        self._slot = threading.BoundedSemaphore(1)
        self._processing = threading.Event()

    @property
    def is_processing(self) -> bool:
        return self._processing.is_set()

    def run_ingestion_cycle(self) -> CycleResult:
        """Run one cycle, or return ALREADY_PROCESSING if one is in progress"""
        if not self._slot.acquire(blocking=False):
            logger.info("Ingestion cycle already running, trigger rejected")
            result = CycleResult(status=CycleStatus.ALREADY_PROCESSING)
            self.tracker.record_cycle(result)
            return result

        self._processing.set()
        start_time = time.monotonic()
        try:
            result = self._run_cycle()
        finally:
            self._processing.clear()
            self._slot.release()

        result.duration = time.monotonic() - start_time
        self.tracker.record_cycle(result)
        logger.info(
            f"Cycle {result.status.value}: processed={result.processed} "
            f"succeeded={result.succeeded} skipped={result.skipped} "
            f"outgoing={result.outgoing} failed={result.failed} "
            f"duplicates={result.duplicates} ({result.duration:.2f}s)"
        )
        return result

    def _run_cycle(self) -> CycleResult:
        try:
            position = self.controller.resolve_start_position()
            batch = self.controller.fetch_delta(position)

            if batch.is_reseed:
                return self._apply_reseed(batch)
            return self._process_batch(batch)

        except TransientProviderError as e:
            logger.error(f"Cycle aborted by mail provider error: {e}")
            if self.error_handler:
                handle_provider_error(self.error_handler, e)
            return CycleResult(status=CycleStatus.ABORTED, error=str(e))
        except Exception as e:
            logger.exception(f"Cycle aborted by unexpected error: {e}")
            if self.error_handler:
                self.error_handler.log_error(
                    f"Unexpected error in ingestion cycle: {e}",
                    "UNEXPECTED_ERROR",
                    ErrorCategory.SYSTEM,
                    exception=e
                )
            return CycleResult(status=CycleStatus.ABORTED, error=str(e))

    def _apply_reseed(self, batch: SyncBatch) -> CycleResult:
        cursor = self.controller.advance_position(batch.reseed_position, batch.reseed_items)
        status = CycleStatus.BOOTSTRAPPED if batch.mode is SyncMode.BOOTSTRAP else CycleStatus.RECOVERED
        logger.info(f"Cursor {status.value} at position {cursor.position}")
        return CycleResult(status=status, cursor_position=cursor.position)

    def _process_batch(self, batch: SyncBatch) -> CycleResult:
        result = CycleResult(
            status=CycleStatus.COMPLETED,
            failed=len(batch.failed_ids),
            filtered=batch.filtered,
            cursor_position=batch.start_position,
        )

        for message in batch.messages:
            result.processed += 1
            self._process_message(message, result)

        if batch.last_position is not None:
            cursor = self.controller.advance_position(batch.last_position, len(batch))
            result.cursor_position = cursor.position

        return result

    def _process_message(self, message: RawMessage, result: CycleResult) -> None:
        try:
            assembly = self.assembler.assemble(message)

            if assembly.status is AssemblyStatus.INCOMPLETE:
                result.skipped += 1
                return
            if assembly.status is AssemblyStatus.OUTGOING:
                result.outgoing += 1
                return

            if self.error_handler:
                for warning in assembly.warnings:
                    self.error_handler.log_warning(
                        f"{assembly.record.transaction_code}: {warning}",
                        "TRANSACTION_WARNING",
                        ErrorCategory.DATA_VALIDATION,
                        message_id=message.id
                    )

            stored = self.store.store(assembly.record)
            result.succeeded += 1
            if not stored.created:
                result.duplicates += 1
                logger.debug(f"Message {message.id} was already stored")

        except Exception as e:
            logger.error(f"Error processing message {message.id}: {e}")
            if self.error_handler:
                handle_message_error(self.error_handler, message.id, e)
            result.failed += 1

    def get_cursor(self) -> Optional[Dict[str, Any]]:
        cursor = self.store.get_cursor()
        return cursor.to_dict() if cursor else None

    def get_statistics(self) -> Dict[str, Any]:
        """Run statistics merged with stored transaction totals"""
        stats = self.tracker.to_dict()
        stats['is_processing'] = self.is_processing
        stats['store'] = self.store.get_transaction_stats()
        return stats

    def get_health(self) -> Dict[str, Any]:
        store_ok = self.store.is_available()
        cursor = self.get_cursor() if store_ok else None
        return {
            'status': 'healthy' if store_ok else 'degraded',
            'store_available': store_ok,
            'cursor': cursor,
            'is_processing': self.is_processing,
        }
