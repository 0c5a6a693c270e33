"""RTCP packets used by the interceptors, with wire encoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum


class PacketType(IntEnum):
    SENDER_REPORT = 200
    RECEIVER_REPORT = 201
    SOURCE_DESCRIPTION = 202
    GOODBYE = 203
    APPLICATION_DEFINED = 204
    TRANSPORT_SPECIFIC_FEEDBACK = 205
    PAYLOAD_SPECIFIC_FEEDBACK = 206


FORMAT_TLN = 1
FORMAT_PLI = 1
FORMAT_TCC = 15

TYPE_TCC_RUN_LENGTH_CHUNK = 0
TYPE_TCC_STATUS_VECTOR_CHUNK = 1
TYPE_TCC_PACKET_NOT_RECEIVED = 0
TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA = 1
TYPE_TCC_PACKET_RECEIVED_LARGE_DELTA = 2
TYPE_TCC_SYMBOL_SIZE_ONE_BIT = 0
TYPE_TCC_SYMBOL_SIZE_TWO_BIT = 1
TYPE_TCC_DELTA_SCALE_FACTOR = 250


@dataclass
class Header:
    """The common 4-byte RTCP header."""

    padding: bool = False
    count: int = 0
    type: int = 0
    length: int = 0

    def marshal(self) -> bytes:
        if self.count > 31:
            raise ValueError("RTCP header count out of range")
        return struct.pack("!BBH", (2 << 6) | (self.padding << 5) | self.count,
                           int(self.type), self.length)

    @classmethod
    def unmarshal(cls, data):
        if len(data) < 4:
            raise ValueError("RTCP header too short")
        b0, ptype, length = struct.unpack_from("!BBH", bytes(data))
        if b0 >> 6 != 2:
            raise ValueError("invalid RTCP version")
        return cls(padding=bool(b0 & 0x20), count=b0 & 0x1F, type=ptype, length=length)


def _frame(count: int, ptype: int, body: bytes) -> bytes:
    return Header(count=count, type=ptype, length=(len(body) + 4) // 4 - 1).marshal() + body


def _body(data, ptype: int, minimum: int) -> tuple[Header, bytes]:
    data = bytes(data)
    header = Header.unmarshal(data)
    if header.type != ptype:
        raise ValueError("wrong RTCP packet type")
    end = (header.length + 1) * 4
    if len(data) < end or end - 4 < minimum:
        raise ValueError("RTCP packet too short")
    body = data[4:end]
    if header.padding:
        if not body or body[-1] == 0 or body[-1] > len(body):
            raise ValueError("invalid RTCP padding")
        body = body[:-body[-1]]
    return header, body


@dataclass
class NackPair:
    """A lost packet id and a bitmask of up to 16 following lost packets."""

    packet_id: int
    lost_packets: int = 0

    def packet_list(self) -> list[int]:
        lost = [self.packet_id]
        lost.extend((self.packet_id + i + 1) & 0xFFFF
                    for i in range(16) if self.lost_packets & (1 << i))
        return lost


def nack_pairs_from_sequence_numbers(seq_nums):
    """Pack a list of lost sequence numbers into NackPairs."""
    pairs: list[NackPair] = []
    current: NackPair | None = None
    for seq in seq_nums:
        if current is None:
            current = NackPair(seq)
            continue
        distance = (seq - current.packet_id) & 0xFFFF
        if distance > 16:
            pairs.append(current)
            current = NackPair(seq)
            continue
        current.lost_packets |= 1 << (distance - 1)
    if current is not None:
        pairs.append(current)
    return pairs


@dataclass
class TransportLayerNack:
    sender_ssrc: int = 0
    media_ssrc: int = 0
    nacks: list[NackPair] = field(default_factory=list)

    def marshal(self) -> bytes:
        body = struct.pack("!II", self.sender_ssrc, self.media_ssrc)
        body += b"".join(struct.pack("!HH", n.packet_id, n.lost_packets) for n in self.nacks)
        return _frame(FORMAT_TLN, PacketType.TRANSPORT_SPECIFIC_FEEDBACK, body)

    @classmethod
    def unmarshal(cls, data):
        _, body = _body(data, PacketType.TRANSPORT_SPECIFIC_FEEDBACK, 8)
        sender, media = struct.unpack_from("!II", body)
        nacks = [NackPair(*struct.unpack_from("!HH", body, off))
                 for off in range(8, len(body) - 3, 4)]
        return cls(sender, media, nacks)


@dataclass
class PictureLossIndication:
    sender_ssrc: int = 0
    media_ssrc: int = 0

    def marshal(self) -> bytes:
        body = struct.pack("!II", self.sender_ssrc, self.media_ssrc)
        return _frame(FORMAT_PLI, PacketType.PAYLOAD_SPECIFIC_FEEDBACK, body)

    @classmethod
    def unmarshal(cls, data):
        _, body = _body(data, PacketType.PAYLOAD_SPECIFIC_FEEDBACK, 8)
        return cls(*struct.unpack_from("!II", body))


@dataclass
class ReceptionReport:
    ssrc: int = 0
    fraction_lost: int = 0
    total_lost: int = 0
    last_sequence_number: int = 0
    jitter: int = 0
    last_sender_report: int = 0
    delay: int = 0

    def _marshal(self) -> bytes:
        if self.total_lost >= 1 << 24:
            raise ValueError("total lost exceeds 24 bits")
        return struct.pack("!IB3sIIII", self.ssrc, self.fraction_lost,
                           self.total_lost.to_bytes(3, "big"), self.last_sequence_number,
                           self.jitter, self.last_sender_report, self.delay)

    @classmethod
    def _unmarshal(cls, data: bytes, offset: int) -> ReceptionReport:
        ssrc, frac, lost, seq, jitter, lsr, delay = struct.unpack_from("!IB3sIIII", data, offset)
        return cls(ssrc, frac, int.from_bytes(lost, "big"), seq, jitter, lsr, delay)


def _reports(body: bytes, offset: int, count: int) -> list[ReceptionReport]:
    if len(body) < offset + 24 * count:
        raise ValueError("RTCP report block truncated")
    return [ReceptionReport._unmarshal(body, offset + 24 * i) for i in range(count)]


@dataclass
class ReceiverReport:
    ssrc: int = 0
    reports: list[ReceptionReport] = field(default_factory=list)

    def marshal(self) -> bytes:
        body = struct.pack("!I", self.ssrc) + b"".join(r._marshal() for r in self.reports)
        return _frame(len(self.reports), PacketType.RECEIVER_REPORT, body)

    @classmethod
    def unmarshal(cls, data):
        header, body = _body(data, PacketType.RECEIVER_REPORT, 4)
        return cls(struct.unpack_from("!I", body)[0], _reports(body, 4, header.count))


@dataclass
class SenderReport:
    ssrc: int = 0
    ntp_time: int = 0
    rtp_time: int = 0
    packet_count: int = 0
    octet_count: int = 0
    reports: list[ReceptionReport] = field(default_factory=list)

    def marshal(self) -> bytes:
        body = struct.pack("!IQIII", self.ssrc, self.ntp_time, self.rtp_time,
                           self.packet_count, self.octet_count)
        body += b"".join(r._marshal() for r in self.reports)
        return _frame(len(self.reports), PacketType.SENDER_REPORT, body)

    @classmethod
    def unmarshal(cls, data):
        header, body = _body(data, PacketType.SENDER_REPORT, 24)
        fields = struct.unpack_from("!IQIII", body)
        return cls(*fields, reports=_reports(body, 24, header.count))


@dataclass
class RunLengthChunk:
    packet_status_symbol: int = 0
    run_length: int = 0
    type: int = TYPE_TCC_RUN_LENGTH_CHUNK

    def marshal(self) -> bytes:
        if self.run_length > 0x1FFF or self.packet_status_symbol > 3:
            raise ValueError("run length chunk out of range")
        return struct.pack("!H", (self.packet_status_symbol << 13) | self.run_length)

    @classmethod
    def unmarshal(cls, data):
        if len(data) < 2:
            raise ValueError("chunk too short")
        value = struct.unpack_from("!H", bytes(data))[0]
        if value >> 15:
            raise ValueError("not a run length chunk")
        return cls((value >> 13) & 0x3, value & 0x1FFF)

    def _statuses(self) -> list[int]:
        return [self.packet_status_symbol] * self.run_length


@dataclass
class StatusVectorChunk:
    symbol_size: int = TYPE_TCC_SYMBOL_SIZE_ONE_BIT
    symbol_list: list[int] = field(default_factory=list)
    type: int = TYPE_TCC_STATUS_VECTOR_CHUNK

    def marshal(self) -> bytes:
        value = 0x8000 | (self.symbol_size << 14)
        if self.symbol_size == TYPE_TCC_SYMBOL_SIZE_ONE_BIT:
            if len(self.symbol_list) > 14:
                raise ValueError("too many symbols for one-bit vector")
            for i, s in enumerate(self.symbol_list):
                value |= (s & 1) << (13 - i)
        else:
            if len(self.symbol_list) > 7:
                raise ValueError("too many symbols for two-bit vector")
            for i, s in enumerate(self.symbol_list):
                value |= (s & 3) << (2 * (6 - i))
        return struct.pack("!H", value)

    @classmethod
    def unmarshal(cls, data):
        if len(data) < 2:
            raise ValueError("chunk too short")
        value = struct.unpack_from("!H", bytes(data))[0]
        if not value >> 15:
            raise ValueError("not a status vector chunk")
        size = (value >> 14) & 1
        if size == TYPE_TCC_SYMBOL_SIZE_ONE_BIT:
            symbols = [(value >> (13 - i)) & 1 for i in range(14)]
        else:
            symbols = [(value >> (2 * (6 - i))) & 3 for i in range(7)]
        return cls(size, symbols)

    def _statuses(self) -> list[int]:
        return list(self.symbol_list)


def _chunk_from(data: bytes):
    if len(data) < 2:
        raise ValueError("chunk too short")
    return StatusVectorChunk.unmarshal(data) if data[0] & 0x80 else RunLengthChunk.unmarshal(data)


@dataclass
class RecvDelta:
    """A receive delta in microseconds and its size class."""

    type: int = TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA
    delta: int = 0

    def marshal(self) -> bytes:
        scaled = abs(self.delta) // TYPE_TCC_DELTA_SCALE_FACTOR
        scaled = -scaled if self.delta < 0 else scaled
        if self.type == TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA and 0 <= scaled <= 0xFF:
            return bytes([scaled])
        if self.type == TYPE_TCC_PACKET_RECEIVED_LARGE_DELTA and -0x8000 <= scaled <= 0x7FFF:
            return struct.pack("!h", scaled)
        raise ValueError("delta out of range for its type")


@dataclass
class TransportLayerCC:
    """Transport-wide congestion control feedback."""

    header: Header = field(default_factory=Header)
    sender_ssrc: int = 0
    media_ssrc: int = 0
    base_sequence_number: int = 0
    packet_status_count: int = 0
    reference_time: int = 0
    fb_pkt_count: int = 0
    packet_chunks: list = field(default_factory=list)
    recv_deltas: list[RecvDelta] = field(default_factory=list)

    def marshal(self) -> bytes:
        body = bytearray(struct.pack("!IIHH", self.sender_ssrc, self.media_ssrc,
                                     self.base_sequence_number, self.packet_status_count))
        body += (self.reference_time & 0xFFFFFF).to_bytes(3, "big") + bytes([self.fb_pkt_count & 0xFF])
        for chunk in self.packet_chunks:
            body += chunk.marshal()
        for delta in self.recv_deltas:
            body += delta.marshal()
        pad = -(len(body) + 4) % 4
        if pad:
            body += b"\x00" * (pad - 1) + bytes([pad])
        header = Header(padding=bool(pad), count=FORMAT_TCC,
                        type=PacketType.TRANSPORT_SPECIFIC_FEEDBACK,
                        length=(len(body) + 4) // 4 - 1)
        return header.marshal() + bytes(body)

    @classmethod
    def unmarshal(cls, data):
        header, body = _body(data, PacketType.TRANSPORT_SPECIFIC_FEEDBACK, 16)
        sender, media, base, count = struct.unpack_from("!IIHH", body)
        ref_time = int.from_bytes(body[12:15], "big")
        offset = 16
        chunks, statuses = [], []
        while len(statuses) < count:
            chunk = _chunk_from(body[offset:offset + 2])
            chunks.append(chunk)
            statuses.extend(chunk._statuses())
            offset += 2
        deltas = []
        for status in statuses[:count]:
            if status == TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA:
                if offset + 1 > len(body):
                    raise ValueError("TCC delta truncated")
                deltas.append(RecvDelta(status, body[offset] * TYPE_TCC_DELTA_SCALE_FACTOR))
                offset += 1
            elif status == TYPE_TCC_PACKET_RECEIVED_LARGE_DELTA:
                if offset + 2 > len(body):
                    raise ValueError("TCC delta truncated")
                value = struct.unpack_from("!h", body, offset)[0]
                deltas.append(RecvDelta(status, value * TYPE_TCC_DELTA_SCALE_FACTOR))
                offset += 2
        return cls(header=header, sender_ssrc=sender, media_ssrc=media,
                   base_sequence_number=base, packet_status_count=count,
                   reference_time=ref_time, fb_pkt_count=body[15],
                   packet_chunks=chunks, recv_deltas=deltas)


def unmarshal(data):
    """Parse a compound RTCP packet into a list of packets."""
    data = bytes(data)
    packets = []
    while data:
        header = Header.unmarshal(data)
        end = (header.length + 1) * 4
        if len(data) < end:
            raise ValueError("RTCP packet truncated")
        chunk, data = data[:end], data[end:]
        kind = (header.type, header.count)
        if header.type == PacketType.SENDER_REPORT:
            packets.append(SenderReport.unmarshal(chunk))
        elif header.type == PacketType.RECEIVER_REPORT:
            packets.append(ReceiverReport.unmarshal(chunk))
        elif kind == (PacketType.TRANSPORT_SPECIFIC_FEEDBACK, FORMAT_TLN):
            packets.append(TransportLayerNack.unmarshal(chunk))
        elif kind == (PacketType.TRANSPORT_SPECIFIC_FEEDBACK, FORMAT_TCC):
            packets.append(TransportLayerCC.unmarshal(chunk))
        elif kind == (PacketType.PAYLOAD_SPECIFIC_FEEDBACK, FORMAT_PLI):
            packets.append(PictureLossIndication.unmarshal(chunk))
        else:
            raise ValueError(f"unsupported RTCP packet type {header.type}/{header.count}")
    return packets