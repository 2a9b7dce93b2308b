# tdmanet

tdmanet is a small Time Division Multiple Access (TDMA) network simulation that runs over TCP. It contains the following modules:

- `tdmanet.protocol` defines the binary `TDMAFrame` format and its functions:
  - The frame carries an 8-byte header and an 8-byte footer.
  - All fields are big-endian.
  - The node id is padded with NUL bytes to 32 bytes.
  - The frame has fragment fields and flags (`FrameFlag`) and a checksum.
  - `new_frame` and `new_fragment_frame` build frames. `deserialize_frame` decodes them.
  - `global_slot_id` reads the shared slot clock. The clock counts slots from 2024-01-01 UTC.
- `tdmanet.scheduler` provides `TDMAScheduler`. It hands out, releases and reports the slots of a fixed-size cycle.
- `tdmanet.network` provides `NetworkInterface`, a single TCP connection that frames are sent over and read from.
- `tdmanet.satellite` provides `SatelliteNode`, a TCP server. It answers slot queries and grants slots to ground stations.
- `tdmanet.groundstation` provides `GroundStationNode`, a client. It holds a fixed slot and sends data to the satellite during that slot.

tdmanet has no dependencies outside the standard library.

## Installation

```
pip install .
```

## Running the nodes

### Satellite

Start a satellite that listens on a port:

```
tdma-satellite 9000
```

Every 5 seconds the satellite prints the scheduler status. Two kinds of frame get a response:

- A frame whose data is `GET_CURRENT_SLOT` is answered with `CURRENT_SLOT_<n>`.
- Any other valid frame gets a slot only if its slot id equals the current global slot. The satellite allocates the slot and replies `ACK_SLOT_<n>`.

The satellite's console commands are:

- `status`: node id, running state and connection state.
- `schedule`: the assigned slots, in slot order.
- `quit`: stops the node.

### Ground station

Start a ground station with a node id, the satellite address and its fixed slot:

```
tdma-groundstation GS_001 127.0.0.1:9000 3
```

Every 3 seconds the station tries to send `DEFAULT_DATA_FROM_<node>_<unix time>`. The frame goes out only when the global clock is in the station's slot. The clock has 10 one-second slots.

If the station receives an `ACK_SLOT_<n>` frame, it takes `n` as its slot.

The station's console commands are:

- `send`: sends the default data now, if it is the station's slot.
- `status`: node id, running state, slot and connection state.
- `quit`: disconnects and exits.

Both commands can also be run as `python -m tdmanet.satellite` and `python -m tdmanet.groundstation`.

## Using the frame format

```python
from tdmanet.protocol import new_frame, deserialize_frame

frame = new_frame(3, "GS_001", b"hello")
wire = frame.serialize()
decoded = deserialize_frame(wire)
decoded.validate()          # raises FrameError on a bad header, footer, checksum or length
print(decoded.node_name())  # "GS_001"
print(decoded)
```

`global_slot_id(slot_duration, total_slots, now=None)` accepts either a `timedelta` or a number of seconds as the duration.

## Scheduling slots

```python
from tdmanet.scheduler import TDMAScheduler

sched = TDMAScheduler(10, 1.0)
slot = sched.allocate_time_slot("GS_001", 1)
print(sched.schedule())     # {slot: "GS_001"}
sched.release_time_slot(slot)
```

`allocate_time_slot` picks the slot as follows:

1. If the node already holds a live slot, it gets that slot back.
2. Otherwise the node gets the nearest free slot, counting from the current slot.
3. If no slot is free, it gets the oldest stale assignment.
4. If none of these applies, `SchedulerError` is raised.

`allocate_consecutive_slots` finds a run of adjacent free slots. `advance()` moves the cycle by one slot. `start()` and `stop()` run `advance()` in a background thread. A custom `clock` can be passed in for testing.

## Limitations

- `update_priority` records a priority, but allocation does not use it.
- `NetworkInterface.send_fragments` sends fragment frames, but nothing reassembles them.
- `fragment_delivery_stats()` always reports zeros.
- Receivers read one chunk per frame and do not buffer a frame that arrives split across reads.

## Running the tests

```
pip install ".[test]"
pytest
```