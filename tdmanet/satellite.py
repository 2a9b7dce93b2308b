"""Satellite node: accepts ground stations, answers slot queries and grants slots."""

from __future__ import annotations

import logging
import socket
import sys
import threading
from datetime import datetime, timezone
from typing import Callable, Iterable

from tdmanet.network import NetworkError, NetworkInterface
from tdmanet.protocol import (
    FRAME_HEADER,
    FrameError,
    TDMAFrame,
    deserialize_frame,
    global_slot_id,
    new_frame,
)
from tdmanet.scheduler import (
    DEFAULT_SLOT_DURATION,
    DEFAULT_TOTAL_SLOTS,
    SchedulerError,
    TDMAScheduler,
)

logger = logging.getLogger(__name__)

DEFAULT_NODE_ID = "SATELLITE_001"
STATUS_INTERVAL = 5.0
BODY_BUFFER_SIZE = 4096
GET_CURRENT_SLOT = b"GET_CURRENT_SLOT"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_peer(conn: socket.socket) -> str:
    try:
        peer = conn.getpeername()
    except OSError:
        return ""
    if isinstance(peer, tuple):
        host, port = peer[0], peer[1]
        return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
    return str(peer)


class SatelliteNode:
    """A listening node that runs the slot scheduler."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        self.scheduler = TDMAScheduler(10, 1.0)
        self.network = NetworkInterface()
        self.running = False
        self.port: int | None = None
        self.clock: Callable[[], datetime] = _utc_now
        self._listener: socket.socket | None = None
        self._connections: set[socket.socket] = set()
        self._conn_lock = threading.Lock()
        self._stop_event = threading.Event()

    def start(self, port: int) -> None:
        """Start the scheduler, listen on ``port`` and serve in background threads."""
        self.scheduler.start()
        try:
            listener = socket.create_server(("", port))
        except (OSError, OverflowError) as exc:
            self.scheduler.stop()
            raise NetworkError(f"listen failed: {exc}") from exc
        self._listener = listener
        self.port = listener.getsockname()[1]
        self._stop_event.clear()
        self.running = True
        print(f"Satellite node {self.node_id} started, listening on port {self.port}")
        threading.Thread(target=self._accept_loop, daemon=True).start()
        threading.Thread(target=self._status_loop, daemon=True).start()

    def stop(self) -> None:
        self.running = False
        self._stop_event.set()
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        with self._conn_lock:
            connections = list(self._connections)
        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        self.scheduler.stop()
        self.network.disconnect()
        print(f"Satellite node {self.node_id} stopped")

    def _accept_loop(self) -> None:
        while self.running:
            listener = self._listener
            if listener is None:
                break
            try:
                conn, _ = listener.accept()
            except OSError as exc:
                if not self.running:
                    break
                logger.warning("accept failed: %s", exc)
                continue
            threading.Thread(target=self.handle_connection, args=(conn,), daemon=True).start()

    def _status_loop(self) -> None:
        while not self._stop_event.wait(STATUS_INTERVAL):
            self.scheduler.print_status()

    def handle_connection(self, conn: socket.socket) -> None:
        """Read frames from one client until it disconnects or the node stops."""
        with self._conn_lock:
            self._connections.add(conn)
        try:
            with conn:
                peer = _format_peer(conn)
                logger.info("accepted connection from %s", peer)
                try:
                    self.network.connect(peer)
                except NetworkError as exc:
                    logger.debug("network interface connect to %s failed: %s", peer, exc)
                self._serve(conn)
        finally:
            with self._conn_lock:
                self._connections.discard(conn)

    def _serve(self, conn: socket.socket) -> None:
        while self.running:
            try:
                head = conn.recv(len(FRAME_HEADER))
            except OSError as exc:
                logger.info("reading frame header failed: %s", exc)
                break
            if not head:
                logger.info("reading frame header failed: connection closed")
                break
            if len(head) != len(FRAME_HEADER):
                logger.warning("short frame header: %d bytes", len(head))
                continue
            if head != FRAME_HEADER:
                logger.warning("invalid frame header: %s", head.hex())
                continue
            try:
                body = conn.recv(BODY_BUFFER_SIZE)
            except OSError as exc:
                logger.info("reading frame body failed: %s", exc)
                break
            if not body:
                logger.info("reading frame body failed: connection closed")
                break
            raw = head + body
            logger.info("received %d raw bytes", len(raw))
            try:
                frame = deserialize_frame(raw)
            except FrameError as exc:
                logger.warning("cannot decode frame: %s, raw data: %s", exc, raw.hex())
                continue
            logger.info("decoded frame: %s", frame)
            self.process_frame(frame, conn)

    def _reply(self, conn: socket.socket, frame: TDMAFrame) -> bool:
        try:
            conn.sendall(frame.serialize())
        except (OSError, FrameError) as exc:
            logger.warning("sending reply failed: %s", exc)
            return False
        return True

    def process_frame(self, frame: TDMAFrame, conn: socket.socket) -> None:
        """Answer slot queries and grant slots to frames sent in the current slot."""
        logger.info("processing frame: %s", frame)
        try:
            frame.validate()
        except FrameError as exc:
            logger.warning("frame validation failed: %s", exc)
            return

        current = global_slot_id(DEFAULT_SLOT_DURATION, DEFAULT_TOTAL_SLOTS, self.clock())
        if frame.data == GET_CURRENT_SLOT:
            response = new_frame(current, self.node_id, f"CURRENT_SLOT_{current}".encode())
            if self._reply(conn, response):
                logger.info("sent slot response: %s", response)
            return

        if frame.slot_id != current:
            logger.info("slot mismatch: expected %d, got %d", current, frame.slot_id)
            return
        node = frame.node_name()
        try:
            slot_id = self.scheduler.allocate_time_slot(node, 1)
        except SchedulerError as exc:
            logger.warning("slot allocation failed: %s", exc)
            return
        logger.info("allocated slot %d to node %s", slot_id, node)
        ack = new_frame(slot_id, self.node_id, f"ACK_SLOT_{slot_id}".encode())
        if self._reply(conn, ack):
            logger.info("sent acknowledgement: %s", ack)

    def handle_command(self, command: str) -> str:
        """Run one console command and return the text to show."""
        if command == "status":
            status = self.network.connection_status()
            return "\n".join(
                [
                    f"Node ID: {self.node_id}",
                    f"Running: {self.running}",
                    f"Connection: connected={status.connected} address={status.address}",
                ]
            )
        if command == "schedule":
            lines = ["Current schedule:"]
            lines.extend(
                f"  Slot {slot}: {node}" for slot, node in sorted(self.scheduler.schedule().items())
            )
            return "\n".join(lines)
        if command == "quit":
            self.stop()
            return ""
        return "Unknown command"

    def command_loop(self, lines: Iterable[str] | None = None) -> None:
        """Read commands from ``lines`` (standard input by default) while running."""
        print("Satellite node commands:")
        print("  status - show status")
        print("  schedule - show schedule")
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
    if not args:
        print("Usage: satellite <port>")
        return 1
    try:
        port = int(args[0])
    except ValueError:
        print(f"Invalid port: {args[0]}")
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    satellite = SatelliteNode(DEFAULT_NODE_ID)
    try:
        satellite.start(port)
    except NetworkError as exc:
        print(f"Failed to start satellite node: {exc}", file=sys.stderr)
        return 1
    satellite.command_loop()
    if satellite.running:
        satellite.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())