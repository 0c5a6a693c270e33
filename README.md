# rtpintercept

Interceptors that sit between an RTP/RTCP transport and your media
pipeline. Each one wraps the readers and writers of a stream and adds
behaviour on top of them:

- **`rtpintercept.nack`**: `GeneratorInterceptor` watches incoming RTP
  and periodically sends transport-layer NACKs for packets that never
  arrived. It uses `ReceiveLog`, a bitmap of recently received sequence
  numbers. `SendBuffer`, `PacketManager`, `NoOpPacketFactory` and
  `RetainablePacket` keep reference-counted copies of sent packets.
- **`rtpintercept.report`**: `SenderInterceptor` sends RTCP sender reports
  and `ReceiverInterceptor` sends receiver reports, each at a fixed
  interval. The per-stream statistics live in `ReceiverStream` and
  `SenderStream`. `ntp_time` converts a datetime to a 64-bit NTP
  timestamp.
- **`rtpintercept.twcc`**: `HeaderExtensionInterceptor` stamps outgoing
  packets with transport-wide sequence numbers. `SenderInterceptor`
  records incoming ones and sends transport-wide congestion control
  feedback, built by `Recorder`.
- **`rtpintercept.packetdump`**: `PacketDumper` writes a readable dump of
  RTP and RTCP traffic to any text stream. Its `SenderInterceptor` and
  `ReceiverInterceptor` feed it.

The package also carries the RTP and RTCP packet types it needs, with
`marshal` and `unmarshal` for each of them:

- `rtpintercept.rtp` holds `Header`, `Packet` and `TransportCCExtension`.
- `rtpintercept.rtcp` holds `SenderReport`, `ReceiverReport`,
  `TransportLayerNack`, `PictureLossIndication` and `TransportLayerCC`,
  with its chunk types.

`rtpintercept.rtcp.unmarshal` parses a compound RTCP packet.

## Installation

```
pip install rtpintercept
```

For the tests:

```
pip install "rtpintercept[test]"
pytest
```

## Concepts

Every interceptor derives from `rtpintercept.interceptor.Interceptor`.
The base class passes everything through unchanged. Its hooks are these:

| Hook | Called |
| --- | --- |
| `bind_rtcp_reader(reader)` | once for each incoming RTCP path |
| `bind_rtcp_writer(writer)` | once for each outgoing RTCP path |
| `bind_local_stream(info, writer)` | for each outgoing RTP stream |
| `unbind_local_stream(info)` | when that stream is removed |
| `bind_remote_stream(info, reader)` | for each incoming RTP stream |
| `unbind_remote_stream(info)` | when that stream is removed |
| `close()` | on shutdown; stops any background thread |

Readers and writers are plain callables:

- A reader is called as `reader(data, attributes)` and returns
  `(data, attributes)`.
- An RTP writer is called as `writer(header, payload, attributes)` and
  returns an int.
- An RTCP writer is called as `writer(packets, attributes)` and returns
  an int.

`attributes` is a dict that an interceptor may use to cache what it has
parsed.

A stream is described by a `StreamInfo`. It holds the SSRC, the clock
rate, the negotiated `RTPHeaderExtension`s and the `RTCPFeedback`
mechanisms. Which streams an interceptor acts on depends on what was
negotiated:

- The NACK generator acts only on streams that negotiated plain `nack`
  feedback.
- The TWCC interceptors act only on streams that negotiated the
  transport-wide CC header extension.

Each interceptor comes from a factory, through
`factory.new_interceptor(interceptor_id)`. The factories take these
keyword arguments, with intervals in seconds:

| Factory | Options |
| --- | --- |
| `nack.generator.GeneratorInterceptorFactory` | `size=512`, `skip_last_n=0`, `interval=0.1`, `log` |
| `report.reporters.ReceiverInterceptorFactory` | `interval=1.0`, `now`, `log` |
| `report.reporters.SenderInterceptorFactory` | `interval=1.0`, `now`, `log` |
| `twcc.twcc_interceptors.SenderInterceptorFactory` | `interval=0.1`, `log` |
| `twcc.twcc_interceptors.HeaderExtensionInterceptorFactory` | none |
| `packetdump.dump_interceptors.SenderInterceptorFactory` / `ReceiverInterceptorFactory` | any `PacketDumper` keyword arguments |

`now` is a callable that returns a timezone-aware datetime.

The `size` option of the NACK generator must be a power of two from 64
to 32768. Any other value raises
`rtpintercept.nack.receive_log.InvalidSizeError`.

`PacketDumper` takes these keyword arguments:

- `rtp_writer` and `rtcp_writer`, which default to stdout;
- `rtp_formatter` and `rtcp_formatter`, which default to
  `default_rtp_formatter` and `default_rtcp_formatter`;
- `rtp_filter` and `rtcp_filter`, which default to dumping everything;
- `log`.

## Example: dumping sent traffic

```python
import io

from rtpintercept.packetdump.dump_interceptors import SenderInterceptorFactory

out = io.StringIO()
factory = SenderInterceptorFactory(rtp_writer=out, rtcp_writer=out)
dumper = factory.new_interceptor("")
# wrap writers with dumper.bind_local_stream(...) / dumper.bind_rtcp_writer(...)
dumper.close()
```

## Example: building TWCC feedback by hand

```python
from rtpintercept.twcc.recorder import Recorder

recorder = Recorder(sender_ssrc=5000)
for seq, arrival_us in [(0, 64_000), (1, 64_250), (3, 65_000)]:
    recorder.record(1234, seq, arrival_us)

for packet in recorder.build_feedback_packet():
    wire = packet.marshal()
```

## Example: tracking missing packets

```python
from rtpintercept.nack.receive_log import ReceiveLog

log = ReceiveLog(128)
for seq in (10, 11, 12, 14, 16):
    log.add(seq)
log.missing_seq_numbers(0)   # [13, 15]
```

## What this package does not do

- No interceptor resends packets when a NACK arrives. `SendBuffer` and
  the packet factories can keep sent packets for that purpose, but
  answering NACKs is left to the caller.
- There is no registry or chain that combines several interceptors into
  one. Bind each interceptor into your pipeline yourself.
- There is no network transport. The interceptors only wrap the readers
  and writers you give them.