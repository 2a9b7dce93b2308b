"""Connection layer that carries TDMA frames over TCP."""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from tdmanet.protocol import FRAME_HEADER, FrameError, TDMAFrame, deserialize_frame

DEFAULT_TIMEOUT = 5.0
DEFAULT_FRAGMENT_TIMEOUT = 10.0
FRAGMENT_GAP = 0.1
RECEIVE_BUFFER_SIZE = 4096


class NetworkError(Exception):
    """Raised when a connection cannot be made or a frame cannot be moved."""


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of the interface's connection."""

    connected: bool
    address: str
    last_seen: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class FragmentDeliveryStats:
    """Counters for fragment delivery."""

    total_fragments: int = 0
    delivered_fragments: int = 0
    failed_fragments: int = 0
    average_delivery_time: timedelta = timedelta(0)


def _seconds(duration: timedelta | float) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def _split_target(target: str) -> tuple[str, int]:
    host, sep, port = target.rpartition(":")
    if not sep:
        raise NetworkError(f"connect failed: missing port in address {target!r}")
    host = host.strip("[]") or "localhost"
    try:
        return host, int(port)
    except ValueError as exc:
        raise NetworkError(f"connect failed: invalid port in address {target!r}") from exc


class NetworkInterface:
    """A single TCP connection that frames are sent over and read from."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conn: socket.socket | None = None
        self._address = ""
        self._connected = False
        self._timeout = DEFAULT_TIMEOUT
        self._fragment_timeout = DEFAULT_FRAGMENT_TIMEOUT

    def connect(self, target: str) -> None:
        """Open a TCP connection to ``target`` given as ``host:port``."""
        with self._lock:
            host, port = _split_target(target)
            try:
                conn = socket.create_connection((host, port), timeout=self._timeout)
            except (OSError, OverflowError) as exc:
                raise NetworkError(f"connect failed: {exc}") from exc
            self._conn = conn
            self._address = target
            self._connected = True
        print(f"Connected to {target}")

    def disconnect(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._connected = False
        print("Disconnected")

    def _require_conn(self) -> socket.socket:
        if not self._connected or self._conn is None:
            raise NetworkError("not connected")
        return self._conn

    def send_frame(self, frame: TDMAFrame, target: str = "") -> None:
        """Write one frame to the connection."""
        with self._lock:
            conn = self._require_conn()
            try:
                data = frame.serialize()
            except FrameError as exc:
                raise NetworkError(f"serialize failed: {exc}") from exc
            try:
                conn.sendall(data)
            except OSError as exc:
                raise NetworkError(f"send failed: {exc}") from exc
        print(f"Sent frame: {frame}")

    def send_fragments(self, fragments: Iterable[TDMAFrame], target: str = "") -> None:
        """Send fragments in order with a short pause between them."""
        items = list(fragments)
        for index, fragment in enumerate(items):
            try:
                self.send_frame(fragment, target)
            except NetworkError as exc:
                raise NetworkError(f"sending fragment {index} failed: {exc}") from exc
            if index < len(items) - 1:
                time.sleep(FRAGMENT_GAP)

    def receive_frame(self) -> TDMAFrame:
        """Read, decode and validate the next frame."""
        with self._lock:
            conn = self._require_conn()
            conn.settimeout(self._timeout)
            try:
                header = conn.recv(len(FRAME_HEADER))
            except OSError as exc:
                raise NetworkError(f"reading frame header failed: {exc}") from exc
            if not header:
                raise NetworkError("reading frame header failed: connection closed")
            if header != FRAME_HEADER:
                raise NetworkError("invalid frame header")
            try:
                body = conn.recv(RECEIVE_BUFFER_SIZE)
            except OSError as exc:
                raise NetworkError(f"reading data failed: {exc}") from exc
            if not body:
                raise NetworkError("reading data failed: connection closed")
            try:
                frame = deserialize_frame(header + body)
            except FrameError as exc:
                raise NetworkError(f"deserialize failed: {exc}") from exc
            try:
                frame.validate()
            except FrameError as exc:
                raise NetworkError(f"frame validation failed: {exc}") from exc
        print(f"Received frame: {frame}")
        return frame

    def connection_status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus(
                connected=self._connected,
                address=self._address,
                last_seen=datetime.now(),
            )

    @property
    def timeout(self) -> float:
        """Connect and read timeout in seconds."""
        with self._lock:
            return self._timeout

    @timeout.setter
    def timeout(self, value: timedelta | float) -> None:
        with self._lock:
            self._timeout = _seconds(value)

    @property
    def fragment_timeout(self) -> float:
        """Fragment timeout in seconds."""
        with self._lock:
            return self._fragment_timeout

    @fragment_timeout.setter
    def fragment_timeout(self, value: timedelta | float) -> None:
        with self._lock:
            self._fragment_timeout = _seconds(value)

    def fragment_delivery_stats(self) -> FragmentDeliveryStats:
        """Delivery counters; fragments are not tracked, so these are all zero."""
        return FragmentDeliveryStats()