"""Transport-wide congestion control feedback built from recorded packet arrivals."""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass

from rtpintercept import rtcp

_U16 = 0xFFFF
_U32 = 0xFFFFFFFF
_INT16_MIN = -(1 << 15)
_INT16_MAX = (1 << 15) - 1

MAX_RUN_LENGTH_CAP = 0x1FFF  # 13 bits
MAX_ONE_BIT_CAP = 14
MAX_TWO_BIT_CAP = 7

_NOT_RECEIVED = rtcp.TYPE_TCC_PACKET_NOT_RECEIVED
_SMALL_DELTA = rtcp.TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA
_LARGE_DELTA = rtcp.TYPE_TCC_PACKET_RECEIVED_LARGE_DELTA


def _div_trunc(numerator: int, denominator: int) -> int:
    """Integer division rounding toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


@dataclass
class PacketInfo:
    """An unwrapped transport sequence number and its arrival time in microseconds."""

    sequence_number: int = 0
    arrival_time: int = 0


def insert_sorted(packets, element):
    """Insert ``element`` into ``packets`` ordered by sequence number.

    An entry with the same sequence number is replaced. The list is
    changed in place and returned.
    """
    position = bisect_left([p.sequence_number for p in packets], element.sequence_number)
    if position < len(packets) and packets[position].sequence_number == element.sequence_number:
        packets[position] = element
    else:
        packets.insert(position, element)
    return packets


class Recorder:
    """Records incoming packets and builds transport-wide CC feedback reports."""

    def __init__(self, sender_ssrc: int):
        self.sender_ssrc = sender_ssrc
        self.media_ssrc = 0
        self.received_packets: list[PacketInfo] = []
        self.cycles = 0
        self.last_sequence_number = 0
        self.fb_pkt_cnt = 0

    def record(self, media_ssrc, sequence_number, arrival_time):
        """Mark ``sequence_number`` of ``media_ssrc`` as received at ``arrival_time`` (µs)."""
        sequence_number &= _U16
        self.media_ssrc = media_ssrc
        if sequence_number < 0x0FFF and self.last_sequence_number > 0xF000:
            self.cycles = (self.cycles + (1 << 16)) & _U32
        insert_sorted(
            self.received_packets,
            PacketInfo(self.cycles | sequence_number, arrival_time),
        )
        self.last_sequence_number = sequence_number

    def _next_feedback(self) -> Feedback:
        feedback = Feedback(self.sender_ssrc, self.media_ssrc, self.fb_pkt_cnt)
        self.fb_pkt_cnt = (self.fb_pkt_cnt + 1) & 0xFF
        return feedback

    def build_feedback_packet(self):
        """Return a list of TransportLayerCC packets covering everything recorded."""
        feedback = self._next_feedback()
        packets, self.received_packets = self.received_packets, []
        if len(packets) < 2:
            return [feedback.get_rtcp()]

        first = packets[0]
        feedback.set_base(first.sequence_number & _U16, first.arrival_time)

        result = []
        for pkt in packets:
            seq = pkt.sequence_number & _U16
            if not feedback.add_received(seq, pkt.arrival_time):
                result.append(feedback.get_rtcp())
                feedback = self._next_feedback()
                feedback.add_received(seq, pkt.arrival_time)
        result.append(feedback.get_rtcp())
        return result


class Feedback:
    """One TransportLayerCC packet under construction."""

    def __init__(self, sender_ssrc=0, media_ssrc=0, count=0):
        self.rtcp = rtcp.TransportLayerCC(
            sender_ssrc=sender_ssrc, media_ssrc=media_ssrc, fb_pkt_count=count
        )
        self.base_sequence_number = 0
        self.ref_timestamp_64ms = 0
        self.last_timestamp_us = 0
        self.next_sequence_number = 0
        self.sequence_number_count = 0
        self.length = 0
        self.last_chunk = Chunk()
        self.chunks: list = []
        self.deltas: list[rtcp.RecvDelta] = []

    def set_base(self, sequence_number, time_us):
        self.base_sequence_number = sequence_number & _U16
        self.next_sequence_number = self.base_sequence_number
        self.ref_timestamp_64ms = _div_trunc(time_us, 64000)
        self.last_timestamp_us = self.ref_timestamp_64ms * 64000

    def get_rtcp(self):
        packet = self.rtcp
        packet.packet_status_count = self.sequence_number_count
        packet.reference_time = self.ref_timestamp_64ms & _U32
        packet.base_sequence_number = self.base_sequence_number
        while self.last_chunk.deltas:
            self.chunks.append(self.last_chunk.encode())
        packet.packet_chunks.extend(self.chunks)
        packet.recv_deltas = self.deltas

        # 4 byte header + 16 byte TWCC header + 2 bytes per chunk + delta bytes
        pad_len = 20 + len(packet.packet_chunks) * 2 + self.length
        padding = pad_len % 4 != 0
        pad_len += -pad_len % 4
        packet.header = rtcp.Header(
            padding=padding,
            count=rtcp.FORMAT_TCC,
            type=rtcp.PacketType.TRANSPORT_SPECIFIC_FEEDBACK,
            length=(pad_len // 4 - 1) & _U16,
        )
        return packet

    def _push_status(self, status: int) -> None:
        if not self.last_chunk.can_add(status):
            self.chunks.append(self.last_chunk.encode())
        self.last_chunk.add(status)

    def add_received(self, sequence_number, timestamp_us):
        """Add a received packet; False when its delta does not fit in 16 bits."""
        sequence_number &= _U16
        delta_us = timestamp_us - self.last_timestamp_us
        delta_250us = _div_trunc(delta_us, 250)
        if not _INT16_MIN <= delta_250us <= _INT16_MAX:
            return False

        while self.next_sequence_number != sequence_number:
            self._push_status(_NOT_RECEIVED)
            self.sequence_number_count = (self.sequence_number_count + 1) & _U16
            self.next_sequence_number = (self.next_sequence_number + 1) & _U16

        if 0 <= delta_250us <= 0xFF:
            self.length += 1
            status = _SMALL_DELTA
        else:
            self.length += 2
            status = _LARGE_DELTA

        self._push_status(status)
        self.deltas.append(rtcp.RecvDelta(type=status, delta=delta_us))
        self.last_timestamp_us = timestamp_us
        self.sequence_number_count = (self.sequence_number_count + 1) & _U16
        self.next_sequence_number = (self.next_sequence_number + 1) & _U16
        return True


class Chunk:
    """Packet status symbols waiting to be encoded into a status chunk."""

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self.deltas: list[int] = []
        self.has_large_delta = False
        self.has_different_types = False

    def can_add(self, delta):
        count = len(self.deltas)
        if count < MAX_TWO_BIT_CAP:
            return True
        if count < MAX_ONE_BIT_CAP and not self.has_large_delta and delta != _LARGE_DELTA:
            return True
        return (
            count < MAX_RUN_LENGTH_CAP
            and not self.has_different_types
            and delta == self.deltas[0]
        )

    def add(self, delta):
        self.deltas.append(delta)
        self.has_large_delta = self.has_large_delta or delta == _LARGE_DELTA
        self.has_different_types = self.has_different_types or delta != self.deltas[0]

    def encode(self):
        """Encode the pending symbols, or the first seven of them, into a chunk."""
        if not self.has_different_types:
            chunk = rtcp.RunLengthChunk(
                packet_status_symbol=self.deltas[0], run_length=len(self.deltas)
            )
            self._reset()
            return chunk
        if len(self.deltas) == MAX_ONE_BIT_CAP:
            chunk = rtcp.StatusVectorChunk(
                symbol_size=rtcp.TYPE_TCC_SYMBOL_SIZE_ONE_BIT, symbol_list=list(self.deltas)
            )
            self._reset()
            return chunk

        head, self.deltas = self.deltas[:MAX_TWO_BIT_CAP], self.deltas[MAX_TWO_BIT_CAP:]
        self.has_different_types = any(d != self.deltas[0] for d in self.deltas)
        self.has_large_delta = _LARGE_DELTA in self.deltas
        return rtcp.StatusVectorChunk(
            symbol_size=rtcp.TYPE_TCC_SYMBOL_SIZE_TWO_BIT, symbol_list=head
        )