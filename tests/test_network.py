import socket
from datetime import timedelta

import pytest

from tdmanet.network import (
    FragmentDeliveryStats,
    NetworkError,
    NetworkInterface,
)
from tdmanet.protocol import new_fragment_frame, new_frame


def _recv_exact(sock, count):
    chunks = []
    remaining = count
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


@pytest.fixture
def server():
    listener = socket.create_server(("127.0.0.1", 0))
    yield listener
    listener.close()


@pytest.fixture
def connected(server):
    ni = NetworkInterface()
    port = server.getsockname()[1]
    ni.connect(f"127.0.0.1:{port}")
    peer, _ = server.accept()
    peer.settimeout(5)
    yield ni, peer, f"127.0.0.1:{port}"
    peer.close()
    ni.disconnect()


def test_initial_status_is_disconnected():
    status = NetworkInterface().connection_status()
    assert status.connected is False
    assert status.address == ""


def test_connect_records_address(connected):
    ni, _, target = connected
    status = ni.connection_status()
    assert status.connected is True
    assert status.address == target


def test_send_without_connection_raises():
    with pytest.raises(NetworkError):
        NetworkInterface().send_frame(new_frame(1, "GS", b"x"), "")


def test_receive_without_connection_raises():
    with pytest.raises(NetworkError):
        NetworkInterface().receive_frame()


def test_send_frame_writes_wire_bytes(connected):
    ni, peer, target = connected
    frame = new_frame(3, "GS-1", b"hello")
    wire = frame.serialize()
    ni.send_frame(frame, target)
    assert _recv_exact(peer, len(wire)) == wire


def test_receive_frame_round_trip(connected):
    ni, peer, _ = connected
    frame = new_frame(7, "SAT", b"ACK_SLOT_7")
    peer.sendall(frame.serialize())
    received = ni.receive_frame()
    assert received == frame
    assert received.node_name() == "SAT"


def test_receive_rejects_bad_header(connected):
    ni, peer, _ = connected
    wire = bytearray(new_frame(1, "SAT", b"data").serialize())
    wire[0] = 0x00
    peer.sendall(bytes(wire))
    with pytest.raises(NetworkError):
        ni.receive_frame()


def test_receive_rejects_bad_crc(connected):
    ni, peer, _ = connected
    frame = new_frame(1, "SAT", b"data")
    frame.crc ^= 1
    peer.sendall(frame.serialize())
    with pytest.raises(NetworkError, match="validation"):
        ni.receive_frame()


def test_receive_times_out(connected):
    ni, _, _ = connected
    ni.timeout = 0.2
    with pytest.raises(NetworkError):
        ni.receive_frame()


def test_receive_after_peer_closes_raises(connected):
    ni, peer, _ = connected
    peer.shutdown(socket.SHUT_WR)
    with pytest.raises(NetworkError):
        ni.receive_frame()


def test_send_fragments_in_order(connected):
    ni, peer, target = connected
    fragments = [
        new_fragment_frame(2, "GS", 9, 2, 0, b"first", True, False),
        new_fragment_frame(2, "GS", 9, 2, 1, b"second", False, True),
    ]
    expected = b"".join(f.serialize() for f in fragments)
    ni.send_fragments(fragments, target)
    assert _recv_exact(peer, len(expected)) == expected


def test_send_fragments_without_connection_names_fragment():
    fragments = [new_fragment_frame(2, "GS", 9, 1, 0, b"x", True, True)]
    with pytest.raises(NetworkError, match="fragment 0"):
        NetworkInterface().send_fragments(fragments, "")


def test_disconnect_clears_state(connected):
    ni, _, _ = connected
    ni.disconnect()
    assert ni.connection_status().connected is False
    with pytest.raises(NetworkError):
        ni.send_frame(new_frame(0, "GS", b""), "")


def test_connect_refused_raises():
    probe = socket.create_server(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    ni = NetworkInterface()
    with pytest.raises(NetworkError):
        ni.connect(f"127.0.0.1:{port}")
    assert ni.connection_status().connected is False


@pytest.mark.parametrize("target", ["no-port", "127.0.0.1:abc"])
def test_connect_bad_target_raises(target):
    with pytest.raises(NetworkError):
        NetworkInterface().connect(target)


def test_timeout_defaults_and_setters():
    ni = NetworkInterface()
    assert ni.timeout == 5.0
    assert ni.fragment_timeout == 10.0
    ni.timeout = timedelta(milliseconds=250)
    ni.fragment_timeout = 3
    assert ni.timeout == 0.25
    assert ni.fragment_timeout == 3.0


def test_fragment_delivery_stats_are_zero():
    stats = NetworkInterface().fragment_delivery_stats()
    assert stats == FragmentDeliveryStats(0, 0, 0, timedelta(0))