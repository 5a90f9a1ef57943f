"""Streaming parser for XES event-log files.

XES logs are XML documents shaped as ``<log>`` containing extension,
classifier and global declarations followed by any number of ``<trace>``
elements, each holding typed attribute leaves and ``<event>`` elements.
Real-world logs are frequently several gigabytes, so the parser walks the
document with lxml's ``iterparse`` and hands each structural unit to an
``XESHandler`` as soon as it is complete. At most one trace subtree is held
in memory at any time.
"""

import gzip
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Dict, List, Optional, Union

from lxml import etree as ET
from tqdm import tqdm

from settings import config
from utils import format_bytes, get_file_size


DEFAULT_LOG_NAME = "Unnamed Log"
DEFAULT_ATTRIBUTE_TYPE = "string"

# Flat attribute leaves; the tag name doubles as the attribute type
ATTRIBUTE_ELEMENTS = frozenset({"string", "date", "int", "float", "boolean", "id"})


class XESParseError(Exception):
    """Raised when an XES document cannot be read or is structurally broken."""


@dataclass
class XESEvent:
    """A single event and its flat key/value attributes."""
    attributes: Dict[str, str] = field(default_factory=dict)
    attribute_types: Dict[str, str] = field(default_factory=dict)

    def add_attribute(self, key: str, value: str, attr_type: str = DEFAULT_ATTRIBUTE_TYPE) -> None:
        self.attributes[key] = value
        self.attribute_types[key] = attr_type


@dataclass
class XESTrace:
    """A trace: flat attributes plus its events in document order."""
    attributes: Dict[str, str] = field(default_factory=dict)
    attribute_types: Dict[str, str] = field(default_factory=dict)
    events: List[XESEvent] = field(default_factory=list)

    def add_attribute(self, key: str, value: str, attr_type: str = DEFAULT_ATTRIBUTE_TYPE) -> None:
        self.attributes[key] = value
        self.attribute_types[key] = attr_type

    def add_event(self, event: XESEvent) -> None:
        self.events.append(event)


class XESHandler(ABC):
    """Receives structural units from ``StreamingXESParser`` in document order.

    ``on_global_attributes`` is the one exception to document order: it is
    delivered once, after the last trace and right before ``on_log_end``.
    """

    @abstractmethod
    def on_log_start(self, log_name: str) -> None:
        ...

    @abstractmethod
    def on_extension(self, name: Optional[str], prefix: Optional[str], uri: Optional[str]) -> None:
        ...

    @abstractmethod
    def on_classifier(self, name: Optional[str], keys: Optional[str]) -> None:
        ...

    @abstractmethod
    def on_global_attributes(self, trace_global: Dict[str, str], event_global: Dict[str, str],
                             trace_global_types: Optional[Dict[str, str]] = None,
                             event_global_types: Optional[Dict[str, str]] = None) -> None:
        ...

    @abstractmethod
    def on_trace(self, trace: XESTrace) -> None:
        ...

    @abstractmethod
    def on_log_end(self) -> None:
        ...

    def on_log_attributes(self, attributes: Dict[str, str], attribute_types: Dict[str, str]) -> None:
        """Log-level attribute leaves, delivered once before the globals. Optional."""


def open_xes_stream(xes_path: str) -> BinaryIO:
    """Open an XES file for binary reading, decompressing ``.gz`` files."""
    if xes_path.lower().endswith(".gz"):
        return gzip.open(xes_path, "rb")
    return open(xes_path, "rb")


def _local_name(tag) -> str:
    return tag.split('}')[-1] if '}' in tag else tag


def _log_display_name(elem) -> str:
    """Find the ``concept:name`` attribute on the log element, if any."""
    # Undeclared prefixes are kept verbatim in the attribute name
    name = elem.get("concept:name")
    if name is None:
        concept_uri = elem.nsmap.get("concept")
        if concept_uri is not None:
            name = elem.get(f"{{{concept_uri}}}name")
    return name if name is not None else DEFAULT_LOG_NAME


def _only_namespace_errors(context) -> bool:
    """Check whether every error the parser logged is a namespace error."""
    errors = list(context.error_log.filter_from_errors())
    return bool(errors) and all(entry.domain == ET.ErrorDomains.NAMESPACE for entry in errors)


class _ParseState:
    """Mutable walk state for a single document."""

    def __init__(self):
        self.path: List[str] = []
        self.trace: Optional[XESTrace] = None
        self.event: Optional[XESEvent] = None
        self.global_is_trace_scope = False
        self.trace_global: Dict[str, str] = {}
        self.trace_global_types: Dict[str, str] = {}
        self.event_global: Dict[str, str] = {}
        self.event_global_types: Dict[str, str] = {}
        self.log_attributes: Dict[str, str] = {}
        self.log_attribute_types: Dict[str, str] = {}
        self.log_closed = False
        self.traces = 0
        self.events = 0


class StreamingXESParser:
    """Incremental XES parser driving an ``XESHandler``.

    Recognizes ``log``, ``extension``, ``classifier``, ``global``, ``trace``,
    ``event`` and the typed attribute leaves. Everything else is skipped.
    Attribute leaves are only taken from the direct children of the element
    that owns them; nested attributes (lists, containers, meta-attributes)
    are ignored.
    """

    def __init__(self, show_progress: bool = False, progress_interval: Optional[int] = None):
        """Initialize the XES parser.

        Args:
            show_progress: Display a tqdm byte progress bar while reading
            progress_interval: Traces between rate log lines (defaults to config)
        """
        self.logger = logging.getLogger("xes_importer.parser")
        self.show_progress = show_progress
        self.progress_interval = progress_interval or config.PROGRESS_INTERVAL

        # Track parsing statistics
        self.stats = {
            'files_processed': 0,
            'traces_parsed': 0,
            'events_parsed': 0
        }

    def parse_file(self, xes_path: str, handler: XESHandler) -> Dict[str, int]:
        """Parse an XES file (optionally gzip-compressed) into ``handler``.

        Args:
            xes_path: Path to the ``.xes`` or ``.xes.gz`` file
            handler: Receiver of the structural callbacks

        Returns:
            Dictionary with the trace and event counts of this document

        Raises:
            XESParseError: If the file cannot be read or is malformed
        """
        xes_path = os.fspath(xes_path)
        # Compressed size says little about how many bytes will be read
        total_size = None if xes_path.lower().endswith(".gz") else get_file_size(xes_path)

        try:
            stream = open_xes_stream(xes_path)
        except OSError as e:
            self.logger.error(f"Cannot open XES file {xes_path}: {e}")
            raise XESParseError(f"Cannot open XES file {xes_path}: {e}") from e

        with stream:
            return self.parse_stream(stream, handler, total_size=total_size,
                                     source_name=os.path.basename(xes_path))

    def parse_stream(self, stream: BinaryIO, handler: XESHandler,
                     total_size: Optional[int] = None,
                     source_name: str = "<stream>") -> Dict[str, int]:
        """Parse an already opened binary stream into ``handler``.

        Args:
            stream: Readable binary stream positioned at the document start
            handler: Receiver of the structural callbacks
            total_size: Approximate byte size, used for progress display only
            source_name: Name used in log messages

        Returns:
            Dictionary with the trace and event counts of this document
        """
        start_time = datetime.now()
        size_info = f" ({format_bytes(total_size)})" if total_size else ""
        self.logger.info(f"Starting streaming parse of XES file: {source_name}{size_info}")

        if self.show_progress:
            with tqdm.wrapattr(stream, "read", total=total_size or None,
                               desc=source_name, leave=False) as wrapped:
                state = self._walk(wrapped, handler, start_time)
        else:
            state = self._walk(stream, handler, start_time)

        processing_time = (datetime.now() - start_time).total_seconds()
        self.logger.info(
            f"Completed streaming parse: {state.traces} traces, {state.events} events "
            f"in {processing_time:.2f} seconds"
        )

        self.stats['files_processed'] += 1
        return {'traces': state.traces, 'events': state.events}

    def _walk(self, stream, handler: XESHandler, start_time: datetime) -> _ParseState:
        state = _ParseState()
        context = ET.iterparse(stream, events=('start', 'end'), huge_tree=True,
                               remove_comments=True, remove_pis=True)

        try:
            for event, elem in context:
                tag_name = _local_name(elem.tag)
                if event == 'start':
                    state.path.append(tag_name)
                    self._handle_start(tag_name, elem, state, handler)
                else:
                    self._handle_end(tag_name, elem, state, handler, start_time)
                    state.path.pop()
        except ET.XMLSyntaxError as e:
            # lxml reports errors only after handing out the events parsed before them
            if not (state.log_closed and _only_namespace_errors(context)):
                self.logger.error(f"XML parsing error after {state.traces} traces: {e}")
                raise XESParseError(f"Malformed XES document: {e}") from e
            self.logger.warning(f"Ignoring undeclared namespace prefixes: {e}")
        except OSError as e:
            self.logger.error(f"Error reading XES stream: {e}")
            raise XESParseError(f"Unable to read XES stream: {e}") from e

        if not state.log_closed:
            raise XESParseError("XES document ended before </log>")

        self._finish_log(state, handler)
        return state

    def _handle_start(self, tag_name: str, elem, state: _ParseState, handler: XESHandler) -> None:
        depth = len(state.path)

        if depth == 1:
            if tag_name != "log":
                raise XESParseError(f"Expected <log> root element, found <{tag_name}>")
            handler.on_log_start(_log_display_name(elem))

        elif depth == 2:
            if tag_name == "trace":
                state.trace = XESTrace()
            elif tag_name == "global":
                state.global_is_trace_scope = elem.get("scope") == "trace"

        elif depth == 3 and tag_name == "event" and state.path[1] == "trace":
            state.event = XESEvent()

    def _handle_end(self, tag_name: str, elem, state: _ParseState, handler: XESHandler,
                    start_time: datetime) -> None:
        depth = len(state.path)
        parent = state.path[-2] if depth > 1 else None

        if depth == 1:
            state.log_closed = True
            return

        if depth == 2:
            if tag_name == "extension":
                handler.on_extension(elem.get("name"), elem.get("prefix"), elem.get("uri"))
            elif tag_name == "classifier":
                handler.on_classifier(elem.get("name"), elem.get("keys"))
            elif tag_name == "trace":
                trace = state.trace
                state.trace = None
                handler.on_trace(trace)
                state.traces += 1
                state.events += len(trace.events)
                self.stats['traces_parsed'] += 1
                self.stats['events_parsed'] += len(trace.events)

                if state.traces % self.progress_interval == 0:
                    elapsed = (datetime.now() - start_time).total_seconds()
                    rate = state.traces / elapsed if elapsed > 0 else 0.0
                    self.logger.info(f"Parsed {state.traces} traces (rate: {rate:.1f} traces/sec)")
            elif tag_name in ATTRIBUTE_ELEMENTS:
                self._collect_leaf(elem, tag_name, state.log_attributes, state.log_attribute_types)

            # Release the finished child of <log> and everything before it
            elem.clear()
            while elem.getprevious() is not None:
                del elem.getparent()[0]
            return

        if depth == 3 and parent == "global" and tag_name in ATTRIBUTE_ELEMENTS:
            if state.global_is_trace_scope:
                self._collect_leaf(elem, tag_name, state.trace_global, state.trace_global_types)
            else:
                self._collect_leaf(elem, tag_name, state.event_global, state.event_global_types)

        elif depth == 3 and parent == "trace":
            if tag_name == "event":
                state.trace.add_event(state.event)
                state.event = None
            elif tag_name in ATTRIBUTE_ELEMENTS:
                key = elem.get("key")
                if key is not None:
                    state.trace.add_attribute(key, elem.get("value") or "", tag_name)

        elif depth == 4 and parent == "event" and state.event is not None \
                and tag_name in ATTRIBUTE_ELEMENTS:
            key = elem.get("key")
            if key is not None:
                state.event.add_attribute(key, elem.get("value") or "", tag_name)

    @staticmethod
    def _collect_leaf(elem, tag_name: str, values: Dict[str, str], types: Dict[str, str]) -> None:
        key = elem.get("key")
        if key is not None:
            values[key] = elem.get("value") or ""
            types[key] = tag_name

    def _finish_log(self, state: _ParseState, handler: XESHandler) -> None:
        if state.log_attributes:
            handler.on_log_attributes(state.log_attributes, state.log_attribute_types)

        # Globals are only complete once every <global> block has been seen
        if state.trace_global or state.event_global:
            handler.on_global_attributes(
                state.trace_global, state.event_global,
                trace_global_types=state.trace_global_types,
                event_global_types=state.event_global_types,
            )

        handler.on_log_end()

    def get_parsing_stats(self) -> Dict[str, int]:
        """Get statistics about parsing performance.

        Returns:
            Dictionary with parsing statistics
        """
        return self.stats.copy()

    def reset_stats(self):
        """Reset parsing statistics."""
        for key in self.stats:
            self.stats[key] = 0
