"""
Structured event records.

Negotiation, trust decisions and sessions report what they did as Event
records alongside ordinary logging. An EventEmitter fans each record out
to its sinks: an in-memory EventCollector for tests and inspection, and
JSONLEventWriter for files or live streams (the CLI's --events).

Event types:
- CONNECT: Connection attempt started/established
- AUTH: A credential (or credential set) was accepted or rejected
- HOST_KEY: Host key trusted, learned, or rejected
- EXEC: Non-interactive command finished
- SHELL: Interactive shell state transitions
- DISCONNECT: Connection closed
- ERROR: Any error condition
"""
from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator, Protocol


class EventType(str, Enum):
    """Event categories."""
    CONNECT = "CONNECT"
    AUTH = "AUTH"
    HOST_KEY = "HOST_KEY"
    EXEC = "EXEC"
    SHELL = "SHELL"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


_EVENT_TYPES = frozenset(e.value for e in EventType)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class Event:
    """
    One record: a category, a Unix timestamp in milliseconds and
    event-specific data.
    """
    event_type: str
    timestamp: float = field(default_factory=_now_ms)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        assert self.event_type in _EVENT_TYPES, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {sorted(_EVENT_TYPES)}"
        assert self.timestamp > 0, f"Timestamp must be positive, got {self.timestamp}"

    def to_json(self) -> str:
        return json.dumps(
            {"event_type": self.event_type, "timestamp": self.timestamp, "data": self.data},
            default=str,
        )

    @classmethod
    def from_json(cls, line: str) -> "Event":
        record = json.loads(line)
        return cls(
            event_type=record["event_type"],
            timestamp=record["timestamp"],
            data=record.get("data", {}),
        )


class EventSink(Protocol):
    """Anything that accepts events."""

    def emit(self, event: Event) -> None:
        ...


class EventCollector:
    """Keeps events in memory, in emission order."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event)}"
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Collected events (copy)."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]


class JSONLEventWriter:
    """
    Writes one JSON object per line to a file or an open text stream.

    A path is opened in append mode (parent directories created) and
    closed by close(). A stream is written to and flushed but left open.
    """

    def __init__(self, target: Path | str | IO[str]) -> None:
        if isinstance(target, (str, Path)):
            self._path: Path | None = Path(target)
            self._stream: IO[str] | None = None
        else:
            self._path = None
            self._stream = target

    def open(self) -> None:
        if self._path is not None and self._stream is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._stream = open(self._path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._path is not None and self._stream is not None:
            self._stream.close()
            self._stream = None

    def emit(self, event: Event) -> None:
        assert self._stream is not None, "Writer not opened. Call open() first."
        self._stream.write(event.to_json() + "\n")
        self._stream.flush()

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventEmitter:
    """
    Creates events and hands them to every configured sink.

    An emitter without sinks drops everything, so components can always
    hold one.

    Args:
        collector: In-memory sink
        jsonl_path: File to append JSONL records to
        stream: Open text stream to write JSONL records to (left open)
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
        stream: IO[str] | None = None,
    ) -> None:
        self._sinks: list[EventSink] = []
        self._writers: list[JSONLEventWriter] = []

        if collector is not None:
            self._sinks.append(collector)
        for target in (jsonl_path, stream):
            if target:
                writer = JSONLEventWriter(target)
                writer.open()
                self._writers.append(writer)
                self._sinks.append(writer)

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = Event(event_type=event_type, data=data)
        for sink in self._sinks:
            sink.emit(event)
        return event

    def close(self) -> None:
        for writer in self._writers:
            writer.close()

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **initial_data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Emit one event for the block, with duration_ms added.

        If the block raises, the event also carries the error text.

        Usage:
            with emitter.timed_event(EventType.EXEC, command="uptime") as data:
                status = await session.run("uptime")
                data["exit_code"] = status
        """
        start_ms = _now_ms()
        event_data = dict(initial_data)

        try:
            yield event_data
        except BaseException as e:
            event_data.setdefault("error", str(e) or type(e).__name__)
            raise
        finally:
            event_data["duration_ms"] = _now_ms() - start_ms
            self.emit(event_type, **event_data)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Read all events from a JSONL file."""
    with open(path, "r", encoding="utf-8") as f:
        return [Event.from_json(line) for line in f if line.strip()]
