"""Telemetry schema and sinks for snake solver instrumentation."""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Protocol, Tuple
import contextlib
import json
import logging
import socket
import threading
import time


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TelemetryEnvelope:
    event: str
    ts_ms: int
    data: Dict[str, Any]


@dataclass(frozen=True)
class SearchStartEvent:
    board_key: str
    time_limit_ms: Optional[int]
    start_depth: int
    workers: str


@dataclass(frozen=True)
class IterationStartEvent:
    depth: int


@dataclass(frozen=True)
class RootResultEvent:
    depth: int
    move: str
    score: float


@dataclass(frozen=True)
class IterationDoneEvent:
    depth: int
    score: float
    best_move: str
    nodes: int
    elapsed_ms: int
    root_scores: list[tuple[str, float]]


@dataclass(frozen=True)
class SearchEndEvent:
    best_move: Optional[str]
    score: float
    depth: int
    complete: bool
    nodes: int
    elapsed_ms: int
    reason: str


class TelemetrySink(Protocol):
    def emit(self, envelope: TelemetryEnvelope) -> None:
        ...

    def close(self) -> None:
        ...


class CallbackTelemetrySink:
    def __init__(self, callback: Callable[[TelemetryEnvelope], None]) -> None:
        self._callback = callback

    def emit(self, envelope: TelemetryEnvelope) -> None:
        self._callback(envelope)

    def close(self) -> None:
        return


class LoggingTelemetrySink:
    """Writes each envelope as one compact JSON log record."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> None:
        self._logger = logger if logger is not None else logging.getLogger("snake_solver.telemetry")
        self._level = level

    def emit(self, envelope: TelemetryEnvelope) -> None:
        if not self._logger.isEnabledFor(self._level):
            return
        self._logger.log(
            self._level,
            "%s %s",
            envelope.event,
            json.dumps(envelope.data, separators=(",", ":")),
        )

    def close(self) -> None:
        return


class TCPLineSink:
    """Streams envelopes as JSON lines to ``host:port`` from a sender thread.

    ``emit`` never blocks the search. The backlog is bounded and the oldest
    envelope is discarded when it is full. Lost connections are retried
    every ``retry_ms`` until ``close``.
    """

    def __init__(self, host: str, port: int, backlog: int = 1024, retry_ms: int = 250) -> None:
        self.address = (host, port)
        self._retry_s = max(0.05, retry_ms / 1000.0)
        self._pending: Deque[TelemetryEnvelope] = deque(maxlen=max(8, backlog))
        self._wakeup = threading.Condition()
        self._closed = False
        self._sender = threading.Thread(target=self._send_loop, name="snake-telemetry-tcp", daemon=True)
        self._sender.start()

    def emit(self, envelope: TelemetryEnvelope) -> None:
        with self._wakeup:
            if self._closed:
                return
            self._pending.append(envelope)
            self._wakeup.notify()

    def close(self) -> None:
        with self._wakeup:
            self._closed = True
            self._wakeup.notify()
        self._sender.join(timeout=0.5)

    def _next(self) -> Optional[TelemetryEnvelope]:
        with self._wakeup:
            while not self._pending and not self._closed:
                self._wakeup.wait(timeout=0.1)
            if self._closed:
                return None
            return self._pending.popleft()

    def _send_loop(self) -> None:
        conn: Optional[socket.socket] = None
        try:
            while not self._closed:
                if conn is None:
                    try:
                        conn = socket.create_connection(self.address, timeout=0.3)
                    except OSError:
                        time.sleep(self._retry_s)
                        continue
                    conn.settimeout(None)
                envelope = self._next()
                if envelope is None:
                    break
                try:
                    conn.sendall(encode_envelope(envelope))
                except OSError:
                    with contextlib.suppress(OSError):
                        conn.close()
                    conn = None
        finally:
            if conn is not None:
                with contextlib.suppress(OSError):
                    conn.close()


def encode_envelope(envelope: TelemetryEnvelope) -> bytes:
    return (json.dumps(asdict(envelope), separators=(",", ":")) + "\n").encode("utf-8")


def emit_event(sink: Optional[TelemetrySink], event: str, payload: Mapping[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink.emit(TelemetryEnvelope(event=event, ts_ms=now_ms(), data=dict(payload)))
    except Exception:
        # Sink failures are dropped; telemetry is best effort.
        return


def emit_dataclass_event(sink: Optional[TelemetrySink], event: str, payload_obj: object) -> None:
    if sink is None:
        return
    emit_event(sink, event, asdict(payload_obj))


def parse_host_port(value: str) -> Optional[Tuple[str, int]]:
    """``"host:port"`` to ``(host, port)``; None for anything else."""
    host, sep, port_raw = value.strip().rpartition(":")
    host = host.strip()
    if not sep or not host or not port_raw.isdigit():
        return None
    port = int(port_raw)
    return (host, port) if 0 < port < 65536 else None
