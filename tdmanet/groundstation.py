"""Ground station node: connects to a satellite and transmits in its own slot."""

from __future__ import annotations

import logging
import queue
import re
import socket
import sys
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable

from tdmanet.network import NetworkError
from tdmanet.protocol import (
    FrameError,
    TDMAFrame,
    deserialize_frame,
    global_slot_id,
    new_frame,
)
from tdmanet.scheduler import DEFAULT_SLOT_DURATION, DEFAULT_TOTAL_SLOTS

logger = logging.getLogger(__name__)

RECEIVE_BUFFER_SIZE = 1024
RECEIVE_TIMEOUT = 5.0
QUERY_TIMEOUT = 2.0
AUTO_SEND_INTERVAL = 3.0
GET_CURRENT_SLOT = b"GET_CURRENT_SLOT"
CURRENT_SLOT_PREFIX = "CURRENT_SLOT_"
ACK_SLOT_PREFIX = "ACK_SLOT_"

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_int(text: str) -> int | None:
    if _INTEGER.fullmatch(text) is None:
        return None
    return int(text)


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    number = _parse_int(port) if sep else None
    if number is None:
        raise NetworkError(f"connecting to satellite failed: invalid address {address!r}")
    return host.strip("[]") or "localhost", number


class GroundStationNode:
    """A node that holds a fixed slot and talks to one satellite."""

    def __init__(self, node_id: str, slot_id: int = -1) -> None:
        self.node_id = node_id
        self.slot_id = slot_id
        self.running = False
        self.clock: Callable[[], datetime] = _utc_now
        self._conn: socket.socket | None = None
        self._send_lock = threading.Lock()
        self._query_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: queue.Queue[TDMAFrame | FrameError] | None = None
        self._stop_event = threading.Event()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self, address: str) -> None:
        """Connect to the satellite at ``host:port`` and start receiving."""
        host, port = _parse_address(address)
        try:
            conn = socket.create_connection((host, port))
        except (OSError, OverflowError) as exc:
            raise NetworkError(f"connecting to satellite failed: {exc}") from exc
        conn.settimeout(RECEIVE_TIMEOUT)
        self._conn = conn
        self.running = True
        self._stop_event.clear()
        print(f"Ground station {self.node_id} connected to satellite {address}")
        threading.Thread(target=self._receive_loop, args=(conn,), daemon=True).start()

    def disconnect(self) -> None:
        self.running = False
        self._stop_event.set()
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            conn.close()
        print(f"Ground station {self.node_id} disconnected")

    def _write(self, frame: TDMAFrame) -> None:
        conn = self._conn
        if conn is None:
            raise NetworkError("not connected to satellite")
        try:
            data = frame.serialize()
        except FrameError as exc:
            raise NetworkError(f"serializing frame failed: {exc}") from exc
        try:
            with self._send_lock:
                conn.sendall(data)
        except OSError as exc:
            raise NetworkError(f"sending frame failed: {exc}") from exc

    def send_frame(self, slot_id: int, data: bytes) -> None:
        """Send ``data`` in a frame stamped with ``slot_id``."""
        frame = new_frame(slot_id, self.node_id, data)
        self._write(frame)
        print(f"Sent frame: {frame}")

    def get_current_slot(self) -> int:
        """Ask the satellite for its current slot."""
        if self._conn is None:
            logger.info("get_current_slot: not connected to satellite")
            raise NetworkError("not connected to satellite")
        with self._query_lock:
            replies: queue.Queue[TDMAFrame | FrameError] = queue.Queue()
            with self._pending_lock:
                self._pending = replies
            try:
                logger.info("get_current_slot: sending request")
                self._write(new_frame(0, self.node_id, GET_CURRENT_SLOT))
                try:
                    reply = replies.get(timeout=QUERY_TIMEOUT)
                except queue.Empty:
                    raise NetworkError("reading response failed: timed out") from None
            finally:
                with self._pending_lock:
                    self._pending = None
        if isinstance(reply, FrameError):
            raise NetworkError(f"parsing response frame failed: {reply}")
        text = reply.data.decode("utf-8", errors="replace")
        logger.info("get_current_slot: response %s", text)
        if not text.startswith(CURRENT_SLOT_PREFIX):
            raise NetworkError("invalid response format")
        slot = _parse_int(text[len(CURRENT_SLOT_PREFIX):])
        if slot is None:
            raise NetworkError(f"parsing slot failed: {text!r}")
        logger.info("get_current_slot: satellite slot %d", slot)
        return slot

    def send_default_data(self) -> bool:
        """Send the default payload if the shared clock is in this node's slot.

        Returns True if a frame was sent, False if it was not this node's turn.
        """
        now = self.clock()
        current = global_slot_id(DEFAULT_SLOT_DURATION, DEFAULT_TOTAL_SLOTS, now)
        logger.info("send_default_data: global slot %d, own slot %d", current, self.slot_id)
        if current != self.slot_id:
            logger.info("send_default_data: not our slot, skipping")
            return False
        payload = f"DEFAULT_DATA_FROM_{self.node_id}_{int(now.timestamp())}".encode()
        self.send_frame(self.slot_id, payload)
        return True

    def _deliver_reply(self, reply: TDMAFrame | FrameError) -> bool:
        with self._pending_lock:
            pending, self._pending = self._pending, None
        if pending is None:
            return False
        pending.put(reply)
        return True

    def _receive_loop(self, conn: socket.socket) -> None:
        while self.running:
            try:
                chunk = conn.recv(RECEIVE_BUFFER_SIZE)
            except socket.timeout:
                continue
            except OSError as exc:
                if self.running:
                    logger.warning("reading data failed: %s", exc)
                break
            if not chunk:
                if self.running:
                    logger.warning("reading data failed: connection closed")
                break
            try:
                frame: TDMAFrame | FrameError = deserialize_frame(chunk)
            except FrameError as exc:
                frame = exc
            if self._deliver_reply(frame):
                continue
            if isinstance(frame, FrameError):
                logger.warning("parsing frame failed: %s", frame)
                continue
            if frame.data.startswith(CURRENT_SLOT_PREFIX.encode()):
                continue
            self.process_frame(frame)

    def process_frame(self, frame: TDMAFrame) -> None:
        """Take a slot grant from an acknowledgement, or show received data."""
        print(f"Received frame: {frame}")
        try:
            frame.validate()
        except FrameError as exc:
            logger.warning("frame validation failed: %s", exc)
            return
        text = frame.data.decode("utf-8", errors="replace")
        if "ACK_SLOT" in text:
            if text.startswith(ACK_SLOT_PREFIX):
                slot = _parse_int(text[len(ACK_SLOT_PREFIX):])
                if slot is not None:
                    self.slot_id = slot
                    print(f"Slot allocation acknowledged: slot {slot}")
        else:
            print(f"Received data: {text}")

    def _auto_send_loop(self) -> None:
        while not self._stop_event.wait(AUTO_SEND_INTERVAL):
            try:
                self.send_default_data()
            except NetworkError as exc:
                logger.warning("auto send: sending default data failed: %s", exc)

    def start_auto_send(self) -> None:
        """Try to send the default payload every few seconds in the background."""
        threading.Thread(target=self._auto_send_loop, daemon=True).start()

    def handle_command(self, command: str) -> str:
        """Run one console command and return the text to show."""
        if command == "send":
            try:
                self.send_default_data()
            except NetworkError as exc:
                return f"Send failed: {exc}"
            return "Send succeeded"
        if command == "status":
            return "\n".join(
                [
                    f"Node ID: {self.node_id}",
                    f"Running: {self.running}",
                    f"Current slot: {self.slot_id}",
                    f"Connection: {'connected' if self.connected else 'not connected'}",
                ]
            )
        if command == "quit":
            self.disconnect()
            return ""
        return "Unknown command"

    def command_loop(self, lines: Iterable[str] | None = None) -> None:
        """Read commands from ``lines`` (standard input by default) while running."""
        print("Ground station commands:")
        print("  send - send default data")
        print("  status - show status")
        print("  quit - exit")
        source = iter(sys.stdin if lines is None else lines)
        while self.running:
            print("> ", end="", flush=True)
            line = next(source, None)
            if line is None:
                break
            command = line.strip()
            output = self.handle_command(command)
            if output:
                print(output)
            if command == "quit":
                return


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) < 3:
        print("Usage: groundstation <node-id> <satellite-host:port> <slot-id>")
        return 1
    node_id, address, slot_text = args[0], args[1], args[2]
    slot_id = _parse_int(slot_text)
    if slot_id is None:
        print(f"Invalid slot id: {slot_text}")
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    station = GroundStationNode(node_id, slot_id)
    logger.info("created ground station %s with fixed slot %d", node_id, slot_id)
    try:
        station.connect(address)
    except NetworkError as exc:
        print(f"Failed to connect to satellite: {exc}", file=sys.stderr)
        return 1
    station.start_auto_send()
    station.command_loop()
    if station.running:
        station.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())