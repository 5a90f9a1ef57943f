"""Shared pytest fixtures for all tests."""
import gzip
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.exc import IntegrityError

from database import XESDatabase
from xes_parser import XESHandler


SAMPLE_XES = """<?xml version="1.0" encoding="UTF-8"?>
<log xes.version="1.0" xmlns:concept="http://www.xes-standard.org/concept.xesext" concept:name="Orders">
  <extension name="Concept" prefix="concept" uri="http://www.xes-standard.org/concept.xesext"/>
  <extension name="Time" prefix="time" uri="http://www.xes-standard.org/time.xesext"/>
  <global scope="trace">
    <string key="concept:name" value="__INVALID__"/>
  </global>
  <global scope="event">
    <string key="concept:name" value="__INVALID__"/>
    <date key="time:timestamp" value="1970-01-01T00:00:00.000+00:00"/>
  </global>
  <classifier name="Activity" keys="concept:name"/>
  <string key="source" value="erp"/>
  <trace>
    <string key="concept:name" value="case-1"/>
    <int key="cost" value="10"/>
    <event>
      <string key="concept:name" value="A"/>
      <date key="time:timestamp" value="2024-01-01T10:00:00.000+00:00"/>
    </event>
    <event>
      <string key="concept:name" value="B"/>
      <date key="time:timestamp" value="2024-01-01T11:00:00.000+00:00"/>
    </event>
  </trace>
  <trace>
    <string key="concept:name" value="case-2"/>
    <event>
      <string key="concept:name" value="A"/>
    </event>
  </trace>
</log>
"""

# Parent table of every foreign key column, per table
FOREIGN_KEYS = {
    "classifier": {"log_id": "log"},
    "attribute": {"ext_id": "extension", "parent_id": "attribute"},
    "event": {"event_coll_id": "event_collection"},
    "log_has_attribute": {"log_id": "log", "attr_id": "attribute"},
    "log_has_trace": {"log_id": "log", "trace_id": "trace"},
    "trace_has_attribute": {"trace_id": "trace", "attr_id": "attribute"},
    "trace_has_event": {"trace_id": "trace", "event_id": "event"},
    "event_has_attribute": {"event_id": "event", "attr_id": "attribute"},
}


class RecordingHandler(XESHandler):
    """Handler that records every callback as a (name, payload) tuple."""

    def __init__(self):
        self.calls: List[tuple] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def payloads(self, name: str) -> List[Any]:
        return [payload for call_name, payload in self.calls if call_name == name]

    def on_log_start(self, log_name):
        self.calls.append(("log_start", log_name))

    def on_extension(self, name, prefix, uri):
        self.calls.append(("extension", (name, prefix, uri)))

    def on_classifier(self, name, keys):
        self.calls.append(("classifier", (name, keys)))

    def on_log_attributes(self, attributes, attribute_types):
        self.calls.append(("log_attributes", (dict(attributes), dict(attribute_types))))

    def on_global_attributes(self, trace_global, event_global,
                             trace_global_types=None, event_global_types=None):
        self.calls.append(("global_attributes", (dict(trace_global), dict(event_global))))

    def on_trace(self, trace):
        self.calls.append(("trace", trace))

    def on_log_end(self):
        self.calls.append(("log_end", None))


class FakeStore:
    """In-memory store that rejects rows referencing ids it has not seen.

    Each row is checked against FOREIGN_KEYS at the moment it is written,
    so a load engine that flushes a child before its parent fails loudly.
    """

    def __init__(self, fail_on_table: Optional[str] = None):
        self.rows: Dict[str, List[Dict[str, Any]]] = {}
        self.ids: Dict[str, List[int]] = {}
        self.next_id: Dict[str, int] = {}
        self.insert_many_calls: List[tuple] = []
        self.fail_on_table = fail_on_table
        self.committed = False
        self.rolled_back = False

    def _check(self, table_name: str, values: Dict[str, Any]) -> None:
        if table_name == self.fail_on_table:
            raise IntegrityError(f"INSERT INTO {table_name}", values, Exception("rejected"))
        for column, parent in FOREIGN_KEYS.get(table_name, {}).items():
            ref = values.get(column)
            if ref is not None and ref not in self.ids.get(parent, []):
                raise IntegrityError(
                    f"INSERT INTO {table_name}", values,
                    Exception(f"{table_name}.{column}={ref} references missing {parent} row"),
                )

    def _store(self, table_name: str, values: Dict[str, Any]) -> None:
        self._check(table_name, values)
        self.rows.setdefault(table_name, []).append(dict(values))

    def insert_returning_id(self, table_name, values=None):
        values = dict(values or {})
        self._check(table_name, values)
        new_id = self.next_id.get(table_name, 1)
        self.next_id[table_name] = new_id + 1
        values["id"] = new_id
        self.ids.setdefault(table_name, []).append(new_id)
        self.rows.setdefault(table_name, []).append(values)
        return new_id

    def insert_row(self, table_name, values):
        self._store(table_name, values)

    def insert_many(self, table_name, rows):
        self.insert_many_calls.append((table_name, len(rows)))
        for row in rows:
            self._store(table_name, row)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def table(self, table_name: str) -> List[Dict[str, Any]]:
        return self.rows.get(table_name, [])


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sample_xes_file(tmp_path):
    path = tmp_path / "orders.xes"
    path.write_text(SAMPLE_XES, encoding="utf-8")
    return path


@pytest.fixture
def sample_xes_gz_file(tmp_path):
    path = tmp_path / "orders.xes.gz"
    with gzip.open(path, "wb") as f:
        f.write(SAMPLE_XES.encode("utf-8"))
    return path


@pytest.fixture
def sqlite_uri(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'xes_test.db'}"


@pytest.fixture
def sqlite_database(sqlite_uri):
    database = XESDatabase(sqlite_uri)
    database.create_schema()
    yield database
    database.close()
