"""Database component for XES event-log storage."""

import time
from typing import Any, Dict, List, Optional

import logging
import pandas as pd
from sqlalchemy import (BigInteger, Boolean, Column, ForeignKey, Integer, MetaData,
                        PrimaryKeyConstraint, Sequence, String, Table, Text,
                        create_engine, event, inspect, text)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import QueuePool

from settings import config


# SQLite only autoincrements INTEGER PRIMARY KEY columns
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

metadata = MetaData()

log_table = Table(
    "log", metadata,
    Column("id", ID_TYPE, Sequence("log_id_seq"), primary_key=True),
    Column("name", String(250), nullable=True),
)

extension_table = Table(
    "extension", metadata,
    Column("id", ID_TYPE, Sequence("extension_id_seq"), primary_key=True),
    Column("name", String(50), nullable=False),
    Column("prefix", String(50), nullable=False),
    Column("uri", String(250), nullable=False),
)

attribute_table = Table(
    "attribute", metadata,
    Column("id", ID_TYPE, Sequence("attribute_id_seq"), primary_key=True),
    Column("type", String(50), nullable=False),
    Column("key", String(250), nullable=False),
    Column("ext_id", ID_TYPE, ForeignKey("extension.id"), nullable=True),
    Column("parent_id", ID_TYPE, ForeignKey("attribute.id"), nullable=True),
)

classifier_table = Table(
    "classifier", metadata,
    Column("id", ID_TYPE, Sequence("classifier_id_seq"), primary_key=True),
    Column("name", String(50), nullable=False),
    Column("keys", Text, nullable=False),
    Column("log_id", ID_TYPE, ForeignKey("log.id"), nullable=False),
)

trace_table = Table(
    "trace", metadata,
    Column("id", ID_TYPE, Sequence("trace_id_seq"), primary_key=True),
)

event_collection_table = Table(
    "event_collection", metadata,
    Column("id", ID_TYPE, Sequence("event_collection_id_seq"), primary_key=True),
    Column("name", String(50), nullable=True),
)

event_table = Table(
    "event", metadata,
    Column("id", ID_TYPE, Sequence("event_id_seq"), primary_key=True),
    Column("event_coll_id", ID_TYPE, ForeignKey("event_collection.id"), nullable=True),
)

log_has_attribute_table = Table(
    "log_has_attribute", metadata,
    Column("log_id", ID_TYPE, ForeignKey("log.id"), nullable=False),
    Column("trace_global", Boolean, nullable=False),
    Column("event_global", Boolean, nullable=False),
    Column("attr_id", ID_TYPE, ForeignKey("attribute.id"), nullable=False),
    Column("value", Text, nullable=False),
    PrimaryKeyConstraint("log_id", "trace_global", "event_global", "attr_id"),
)

log_has_trace_table = Table(
    "log_has_trace", metadata,
    Column("sequence", BigInteger, nullable=False),
    Column("log_id", ID_TYPE, ForeignKey("log.id"), nullable=False),
    Column("trace_id", ID_TYPE, ForeignKey("trace.id"), nullable=False),
    PrimaryKeyConstraint("log_id", "sequence"),
)

trace_has_attribute_table = Table(
    "trace_has_attribute", metadata,
    Column("trace_id", ID_TYPE, ForeignKey("trace.id"), nullable=False),
    Column("attr_id", ID_TYPE, ForeignKey("attribute.id"), nullable=False),
    Column("value", Text, nullable=False),
    PrimaryKeyConstraint("trace_id", "attr_id"),
)

trace_has_event_table = Table(
    "trace_has_event", metadata,
    Column("sequence", BigInteger, nullable=False),
    Column("trace_id", ID_TYPE, ForeignKey("trace.id"), nullable=False),
    Column("event_id", ID_TYPE, ForeignKey("event.id"), nullable=False),
    PrimaryKeyConstraint("trace_id", "sequence"),
)

event_has_attribute_table = Table(
    "event_has_attribute", metadata,
    Column("event_id", ID_TYPE, ForeignKey("event.id"), nullable=False),
    Column("attr_id", ID_TYPE, ForeignKey("attribute.id"), nullable=False),
    Column("value", Text, nullable=False),
    PrimaryKeyConstraint("event_id", "attr_id"),
)

# Tables reported by the import statistics, in display order
STATISTICS_TABLES = ["log", "trace", "event", "attribute", "extension", "classifier"]


class ImportTransaction:
    """One import's unit of work on a single exclusive connection.

    Every write of an import goes through this object and lands in the same
    database transaction, so a failed import can be rolled back as a whole.
    """

    def __init__(self, engine: Engine):
        self.logger = logging.getLogger("xes_importer.database")
        self.connection: Connection = engine.connect()
        self.transaction = self.connection.begin()
        self._finished = False

    def insert_returning_id(self, table_name: str, values: Optional[Dict[str, Any]] = None) -> int:
        """Insert a single row and return its generated identifier."""
        table = metadata.tables[table_name]
        result = self.connection.execute(table.insert().values(**(values or {})))
        return result.inserted_primary_key[0]

    def insert_row(self, table_name: str, values: Dict[str, Any]) -> None:
        """Insert a single row that has no generated identifier."""
        self.connection.execute(metadata.tables[table_name].insert().values(**values))

    def insert_many(self, table_name: str, rows: List[Dict[str, Any]]) -> None:
        """Insert a batch of rows with one executemany round-trip."""
        if not rows:
            return
        self.connection.execute(metadata.tables[table_name].insert(), rows)

    def commit(self) -> None:
        self.transaction.commit()
        self._finished = True
        self.logger.debug("Transaction committed")

    def rollback(self) -> None:
        if self._finished:
            return
        try:
            self.transaction.rollback()
            self.logger.debug("Transaction rolled back")
        except Exception as e:
            self.logger.error(f"Error rolling back transaction: {e}")
        self._finished = True

    def close(self) -> None:
        if not self._finished:
            self.rollback()
        self.connection.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class XESDatabase:
    """Database manager for imported XES event logs."""

    def __init__(self, database_uri: Optional[str] = None):
        """Initialize database connection.

        Args:
            database_uri: Database connection string (defaults to config)
        """
        self.logger = logging.getLogger("xes_importer.database")
        self.database_uri = database_uri or config.DATABASE_URI
        self.engine: Optional[Engine] = None
        self._connection_pool_size = 5
        self._max_overflow = 10

        # Initialize connection
        self._create_engine()

    def _create_engine(self) -> None:
        """Create SQLAlchemy engine with appropriate configuration."""
        try:
            engine_kwargs = {
                'echo': False,  # Set to True for SQL debugging
                'pool_pre_ping': True,  # Verify connections before use
            }

            if self.is_postgresql():
                self.logger.info("Configuring for PostgreSQL database")
                engine_kwargs.update({
                    'poolclass': QueuePool,
                    'pool_size': self._connection_pool_size,
                    'max_overflow': self._max_overflow,
                    'pool_recycle': 3600,  # Recycle connections after 1 hour
                })
            else:
                # Local SQLite
                engine_kwargs.update({
                    'connect_args': {'check_same_thread': False}
                })

            self.engine = create_engine(self.database_uri, **engine_kwargs)

            if self.is_sqlite():
                # SQLite ignores foreign keys unless asked on every connection
                @event.listens_for(self.engine, "connect")
                def _enable_foreign_keys(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys = ON")
                    cursor.close()

            # Test connection
            self._test_connection()

            self.logger.info(f"Database engine created: {config.get_database_type(self.database_uri)}")

        except Exception as e:
            self.logger.error(f"Failed to create database engine: {e}")
            raise

    def _test_connection(self) -> None:
        """Test database connection."""
        def _ping():
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        try:
            self.execute_with_retry(_ping)
            self.logger.info("Database connection test successful")
        except Exception as e:
            self.logger.error(f"Database connection test failed: {e}")
            raise

    def get_connection_info(self) -> Dict[str, Any]:
        """Get information about the database connection.

        Returns:
            Dictionary with connection information
        """
        return {
            'database_type': config.get_database_type(self.database_uri),
            'database_uri': self.database_uri.split('@')[-1] if '@' in self.database_uri else self.database_uri,
            'engine_created': self.engine is not None,
        }

    def is_sqlite(self) -> bool:
        """Check if the database is SQLite."""
        return config.is_sqlite(self.database_uri)

    def is_postgresql(self) -> bool:
        """Check if the database is PostgreSQL."""
        return config.is_postgresql(self.database_uri)

    def execute_with_retry(self, operation, max_retries: int = None) -> Any:
        """Execute a connection-level operation with retry logic.

        Only used for read-only and connectivity operations; import writes
        are never retried.

        Args:
            operation: Function to execute
            max_retries: Maximum number of retries (defaults to config.MAX_RETRIES)

        Returns:
            Result of the operation

        Raises:
            SQLAlchemyError: If operation fails after all retries
        """
        if max_retries is None:
            max_retries = config.MAX_RETRIES

        for attempt in range(max_retries + 1):
            try:
                return operation()
            except OperationalError as e:
                if attempt < max_retries:
                    wait_time = 2 ** attempt  # Exponential backoff
                    self.logger.warning(f"Database operation failed (attempt {attempt + 1}): {e}. Retrying in {wait_time}s...")
                    time.sleep(wait_time)
                else:
                    self.logger.error(f"Database operation failed after {max_retries + 1} attempts")
                    raise

    def get_existing_tables(self) -> List[str]:
        """Get list of existing tables in the database."""
        return self.execute_with_retry(lambda: inspect(self.engine).get_table_names())

    def create_schema(self) -> None:
        """Create the event-log tables and sequences if they do not exist."""
        try:
            metadata.create_all(self.engine, checkfirst=True)
            self.logger.info("Event-log schema created successfully")
        except Exception as e:
            self.logger.error(f"Failed to create event-log schema: {e}")
            raise

    def drop_schema(self) -> None:
        """Drop all event-log tables and sequences."""
        try:
            metadata.drop_all(self.engine, checkfirst=True)
            self.logger.info("Event-log schema dropped")
        except Exception as e:
            self.logger.error(f"Failed to drop event-log schema: {e}")
            raise

    def recreate_schema(self) -> None:
        """Drop and recreate every table, discarding previously imported data."""
        self.logger.info("Dropping and recreating database tables...")
        self.drop_schema()
        self.create_schema()
        self.logger.info("Successfully recreated all tables")

    def begin_import(self) -> ImportTransaction:
        """Open the single transaction an import writes through."""
        return ImportTransaction(self.engine)

    def get_table_row_count(self, table_name: str) -> int:
        """Count the rows of one event-log table."""
        table = metadata.tables[table_name]

        def _count():
            with self.engine.connect() as conn:
                return conn.execute(text(f'SELECT COUNT(*) FROM "{table.name}"')).scalar()

        return self.execute_with_retry(_count)

    def get_import_statistics(self, top_attributes: int = 5) -> Dict[str, Any]:
        """Summarize the imported data.

        Args:
            top_attributes: Number of most used event attribute keys to report

        Returns:
            Dictionary with per-table row counts, events-per-trace figures and
            a DataFrame of the most used event attribute keys
        """
        def _collect():
            with self.engine.connect() as conn:
                counts = {
                    table_name: conn.execute(text(f'SELECT COUNT(*) FROM "{table_name}"')).scalar()
                    for table_name in STATISTICS_TABLES
                }

                per_trace = pd.read_sql_query(
                    text(
                        "SELECT AVG(event_count) AS avg_events, MIN(event_count) AS min_events, "
                        "MAX(event_count) AS max_events FROM "
                        "(SELECT COUNT(*) AS event_count FROM trace_has_event GROUP BY trace_id) AS trace_stats"
                    ),
                    conn,
                )

                top = pd.read_sql_query(
                    text(
                        'SELECT a."key" AS "key", COUNT(*) AS usage_count '
                        "FROM event_has_attribute eha JOIN attribute a ON eha.attr_id = a.id "
                        'GROUP BY a."key" ORDER BY usage_count DESC, a."key" LIMIT :limit'
                    ),
                    conn,
                    params={"limit": int(top_attributes)},
                )
                return counts, per_trace, top

        try:
            counts, per_trace, top = self.execute_with_retry(_collect)
        except Exception as e:
            self.logger.error(f"Error collecting import statistics: {e}")
            raise

        row = per_trace.iloc[0] if not per_trace.empty else None
        events_per_trace = {
            'avg': float(row['avg_events']) if row is not None and pd.notna(row['avg_events']) else 0.0,
            'min': int(row['min_events']) if row is not None and pd.notna(row['min_events']) else 0,
            'max': int(row['max_events']) if row is not None and pd.notna(row['max_events']) else 0,
        }

        return {
            'counts': counts,
            'events_per_trace': events_per_trace,
            'top_event_attributes': top,
        }

    def close(self) -> None:
        """Close database connections."""
        if self.engine:
            self.engine.dispose()
            self.logger.info("Database connections closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
