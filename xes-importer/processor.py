"""Batch load engine turning parsed XES structure into relational rows."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from settings import config
from utils import log_memory_usage
from registry import AttributeRegistry
from xes_parser import StreamingXESParser, XESHandler, XESTrace


DEFAULT_EVENT_COLLECTION = "default"

# Flush order follows the foreign keys between the batched tables
BATCHED_TABLES = (
    "log_has_attribute",
    "trace_has_attribute",
    "trace_has_event",
    "event_has_attribute",
)


class XESImportError(Exception):
    """Raised when imported rows cannot be written to the store."""


class BatchXESProcessor(XESHandler):
    """Load engine writing one XES log through an ``ImportTransaction``.

    Log, extension, classifier, attribute, trace and event rows are written
    immediately because later rows need their generated ids. The
    high-volume link rows (trace/event attributes, trace-event membership,
    log attributes) are buffered and flushed every ``flush_interval``
    traces. Every buffered row references ids that already exist, so a
    flush can never violate a foreign key.
    """

    def __init__(self, store, flush_interval: Optional[int] = None,
                 progress_interval: Optional[int] = None):
        """Initialize the load engine.

        Args:
            store: Open ``ImportTransaction`` (or any object with the same methods)
            flush_interval: Traces between batch flushes (defaults to config)
            progress_interval: Traces between progress reports (defaults to config)
        """
        self.logger = logging.getLogger("xes_importer.processor")
        self.store = store
        self.registry = AttributeRegistry(store)
        self.flush_interval = flush_interval or config.SQL_FLUSH_INTERVAL
        self.progress_interval = progress_interval or config.PROGRESS_INTERVAL

        self.pending: Dict[str, List[Dict[str, Any]]] = {table: [] for table in BATCHED_TABLES}

        # Current processing state
        self.log_id: Optional[int] = None
        self.event_collection_id: Optional[int] = None
        self.trace_sequence = 0
        self.traces_processed = 0
        self.events_processed = 0
        self.classifiers_processed = 0
        self.finished = False
        self.start_time: Optional[datetime] = None

    def on_log_start(self, log_name: str) -> None:
        if self.log_id is not None:
            raise XESImportError("Log already started; one import holds exactly one log")

        self.start_time = datetime.now()
        try:
            self.log_id = self.store.insert_returning_id("log", {'name': log_name})
            self.event_collection_id = self.store.insert_returning_id(
                "event_collection", {'name': DEFAULT_EVENT_COLLECTION}
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating log entry: {e}")
            raise XESImportError(f"Error creating log entry: {e}") from e

        self.logger.info(f"Created log with ID: {self.log_id} and name: {log_name}")

    def on_extension(self, name: Optional[str], prefix: Optional[str], uri: Optional[str]) -> None:
        try:
            self.registry.register_extension(name, prefix, uri)
        except SQLAlchemyError as e:
            self.logger.error(f"Error processing extension {prefix!r}: {e}")
            raise XESImportError(f"Error processing extension {prefix!r}: {e}") from e

    def on_classifier(self, name: Optional[str], keys: Optional[str]) -> None:
        log_id = self._require_log()
        try:
            self.store.insert_returning_id("classifier", {
                'name': name or "",
                'keys': keys or "",
                'log_id': log_id,
            })
        except SQLAlchemyError as e:
            self.logger.error(f"Error processing classifier {name!r}: {e}")
            raise XESImportError(f"Error processing classifier {name!r}: {e}") from e

        self.classifiers_processed += 1
        self.logger.debug(f"Inserted classifier: {name}")

    def on_log_attributes(self, attributes: Dict[str, str], attribute_types: Dict[str, str]) -> None:
        self._require_log()
        try:
            self._queue_log_attributes(attributes, attribute_types, trace_global=False, event_global=False)
            self.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error processing log attributes: {e}")
            raise XESImportError(f"Error processing log attributes: {e}") from e

    def on_global_attributes(self, trace_global: Dict[str, str], event_global: Dict[str, str],
                             trace_global_types: Optional[Dict[str, str]] = None,
                             event_global_types: Optional[Dict[str, str]] = None) -> None:
        self._require_log()
        try:
            self._queue_log_attributes(trace_global, trace_global_types, trace_global=True, event_global=False)
            self._queue_log_attributes(event_global, event_global_types, trace_global=False, event_global=True)
            self.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Error processing global attributes: {e}")
            raise XESImportError(f"Error processing global attributes: {e}") from e

        self.logger.info(
            f"Recorded {len(trace_global)} trace-global and {len(event_global)} event-global attributes"
        )

    def on_trace(self, trace: XESTrace) -> None:
        log_id = self._require_log()
        trace_number = self.trace_sequence
        try:
            trace_id = self._create_trace(log_id)
            self._queue_attributes("trace_has_attribute", "trace_id", trace_id,
                                   trace.attributes, trace.attribute_types)
            self._process_trace_events(trace_id, trace)
        except SQLAlchemyError as e:
            self.logger.error(f"Error processing trace {trace_number}: {e}")
            raise XESImportError(f"Error processing trace {trace_number}: {e}") from e

        self.traces_processed += 1
        self.events_processed += len(trace.events)

        # Execute SQL batches periodically
        if self.traces_processed % self.flush_interval == 0:
            try:
                self.flush()
            except SQLAlchemyError as e:
                self.logger.error(f"Error flushing batches after {self.traces_processed} traces: {e}")
                raise XESImportError(f"Error flushing batches: {e}") from e

        if self.traces_processed % self.progress_interval == 0:
            self.logger.info(f"Processed {self.traces_processed} traces, {self.events_processed} events")
            log_memory_usage(self.logger, f"{self.traces_processed} traces")

    def on_log_end(self) -> None:
        self._require_log()
        try:
            self.flush()
            self.store.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finalizing import: {e}")
            raise XESImportError(f"Error finalizing import: {e}") from e

        self.finished = True
        elapsed = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0.0
        self.logger.info(
            f"Processing completed: {self.traces_processed} traces, {self.events_processed} events "
            f"in {elapsed:.2f}s"
        )

    def flush(self) -> None:
        """Write every buffered row, parents before children."""
        for table_name in BATCHED_TABLES:
            rows = self.pending[table_name]
            if rows:
                self.store.insert_many(table_name, rows)
                self.logger.debug(f"Flushed {len(rows)} rows into {table_name}")
                self.pending[table_name] = []

    def pending_row_count(self) -> int:
        return sum(len(rows) for rows in self.pending.values())

    def get_stats(self) -> Dict[str, int]:
        """Get counts of what this import has written so far."""
        return {
            'log_id': self.log_id,
            'traces': self.traces_processed,
            'events': self.events_processed,
            'attributes': self.registry.attribute_count,
            'extensions': self.registry.extension_count,
            'classifiers': self.classifiers_processed,
        }

    def _require_log(self) -> int:
        if self.log_id is None:
            raise XESImportError("Received log content before the log start")
        if self.finished:
            raise XESImportError("Received log content after the log end")
        return self.log_id

    def _create_trace(self, log_id: int) -> int:
        trace_id = self.store.insert_returning_id("trace")

        # The link row needs the trace id, so it is written immediately too
        self.store.insert_row("log_has_trace", {
            'sequence': self.trace_sequence,
            'log_id': log_id,
            'trace_id': trace_id,
        })
        self.trace_sequence += 1
        return trace_id

    def _process_trace_events(self, trace_id: int, trace: XESTrace) -> None:
        for event_sequence, event in enumerate(trace.events):
            event_id = self.store.insert_returning_id("event", {
                'event_coll_id': self.event_collection_id,
            })

            self.pending["trace_has_event"].append({
                'sequence': event_sequence,
                'trace_id': trace_id,
                'event_id': event_id,
            })

            self._queue_attributes("event_has_attribute", "event_id", event_id,
                                   event.attributes, event.attribute_types)

    def _queue_attributes(self, table_name: str, owner_column: str, owner_id: int,
                          attributes: Dict[str, str], attribute_types: Optional[Dict[str, str]]) -> None:
        attribute_types = attribute_types or {}
        rows = self.pending[table_name]
        for key, value in attributes.items():
            attr_id = self.registry.resolve_attribute(key, attribute_types.get(key))
            rows.append({owner_column: owner_id, 'attr_id': attr_id, 'value': value})

    def _queue_log_attributes(self, attributes: Dict[str, str], attribute_types: Optional[Dict[str, str]],
                              trace_global: bool, event_global: bool) -> None:
        attribute_types = attribute_types or {}
        rows = self.pending["log_has_attribute"]
        for key, value in attributes.items():
            attr_id = self.registry.resolve_attribute(key, attribute_types.get(key))
            rows.append({
                'log_id': self.log_id,
                'trace_global': trace_global,
                'event_global': event_global,
                'attr_id': attr_id,
                'value': value,
            })


def import_xes_file(xes_path: str, database, recreate_schema: bool = True,
                    show_progress: bool = False, flush_interval: Optional[int] = None) -> Dict[str, int]:
    """Import one XES file into ``database`` as a single transaction.

    Args:
        xes_path: Path to the ``.xes`` / ``.xes.gz`` file
        database: ``XESDatabase`` to write into
        recreate_schema: Drop and recreate all tables before importing
        show_progress: Display a byte progress bar while parsing
        flush_interval: Traces between batch flushes (defaults to config)

    Returns:
        Import statistics from the load engine

    Raises:
        XESParseError: If the document is malformed; nothing is committed
        XESImportError: If a write fails; nothing is committed
    """
    logger = logging.getLogger("xes_importer.processor")

    if recreate_schema:
        database.recreate_schema()
    else:
        database.create_schema()

    parser = StreamingXESParser(show_progress=show_progress)

    with database.begin_import() as transaction:
        processor = BatchXESProcessor(transaction, flush_interval=flush_interval)
        try:
            parser.parse_file(xes_path, processor)
        except Exception as e:
            logger.error(f"Error during import of {xes_path}, rolling back: {e}")
            transaction.rollback()
            raise

    return processor.get_stats()
