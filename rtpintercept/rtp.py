"""RTP header and packet encoding, with header extensions."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

HEADER_LENGTH = 12
ONE_BYTE_PROFILE = 0xBEDE
TWO_BYTE_PROFILE = 0x1000


def _pad4(data: bytes) -> bytes:
    return data + b"\x00" * (-len(data) % 4)


@dataclass
class Header:
    """An RTP fixed header with optional CSRCs and header extensions."""

    version: int = 2
    padding: bool = False
    marker: bool = False
    payload_type: int = 0
    sequence_number: int = 0
    timestamp: int = 0
    ssrc: int = 0
    csrc: list[int] = field(default_factory=list)
    extension: bool = False
    extension_profile: int = 0
    extensions: list[tuple[int, bytes]] = field(default_factory=list)

    def _extension_body(self) -> bytes:
        if self.extension_profile == ONE_BYTE_PROFILE:
            body = b"".join(bytes([(i << 4) | (len(p) - 1)]) + p for i, p in self.extensions)
        elif self.extension_profile & 0xFFF0 == TWO_BYTE_PROFILE:
            body = b"".join(bytes([i, len(p)]) + p for i, p in self.extensions)
        else:
            body = b"".join(p for _, p in self.extensions)
        return _pad4(body)

    def marshal(self) -> bytes:
        if len(self.csrc) > 15:
            raise ValueError("too many CSRCs")
        first = (self.version << 6) | (self.padding << 5) | (self.extension << 4) | len(self.csrc)
        second = (self.marker << 7) | (self.payload_type & 0x7F)
        out = bytearray(struct.pack("!BBHII", first, second, self.sequence_number & 0xFFFF,
                                    self.timestamp & 0xFFFFFFFF, self.ssrc & 0xFFFFFFFF))
        for c in self.csrc:
            out += struct.pack("!I", c)
        if self.extension:
            body = self._extension_body()
            out += struct.pack("!HH", self.extension_profile, len(body) // 4) + body
        return bytes(out)

    @classmethod
    def _unmarshal_sized(cls, data: bytes) -> tuple[Header, int]:
        if len(data) < HEADER_LENGTH:
            raise ValueError("RTP header too short")
        b0, b1, seq, ts, ssrc = struct.unpack_from("!BBHII", data, 0)
        cc = b0 & 0x0F
        offset = HEADER_LENGTH + 4 * cc
        if len(data) < offset:
            raise ValueError("RTP header too short for CSRC list")
        header = cls(
            version=b0 >> 6,
            padding=bool(b0 & 0x20),
            marker=bool(b1 & 0x80),
            payload_type=b1 & 0x7F,
            sequence_number=seq,
            timestamp=ts,
            ssrc=ssrc,
            csrc=list(struct.unpack_from(f"!{cc}I", data, HEADER_LENGTH)),
            extension=bool(b0 & 0x10),
        )
        if header.extension:
            if len(data) < offset + 4:
                raise ValueError("RTP header too short for extension")
            profile, words = struct.unpack_from("!HH", data, offset)
            end = offset + 4 + words * 4
            if len(data) < end:
                raise ValueError("RTP header extension truncated")
            header.extension_profile = profile
            header.extensions = _parse_extensions(profile, data[offset + 4:end])
            offset = end
        return header, offset

    @classmethod
    def unmarshal(cls, data):
        return cls._unmarshal_sized(bytes(data))[0]

    def marshal_size(self) -> int:
        return len(self.marshal())

    def set_extension(self, ext_id, payload):
        """Set or replace the extension ``ext_id``, choosing a profile if needed."""
        payload = bytes(payload)
        if not self.extension:
            self.extension_profile = ONE_BYTE_PROFILE if len(payload) <= 16 else TWO_BYTE_PROFILE
        profile = self.extension_profile
        if profile == ONE_BYTE_PROFILE:
            if not 1 <= ext_id <= 14:
                raise ValueError("one-byte extension id must be in 1..14")
            if not 1 <= len(payload) <= 16:
                raise ValueError("one-byte extension payload must be 1..16 bytes")
        elif profile & 0xFFF0 == TWO_BYTE_PROFILE:
            if ext_id < 1 or ext_id > 255:
                raise ValueError("two-byte extension id must be in 1..255")
            if len(payload) > 255:
                raise ValueError("two-byte extension payload must be at most 255 bytes")
        elif ext_id != 0:
            raise ValueError("extension id must be 0 for this profile")
        if not self.extension:
            self.extension = True
            self.extensions = [(ext_id, payload)]
            return
        for index, (existing, _) in enumerate(self.extensions):
            if existing == ext_id:
                self.extensions[index] = (ext_id, payload)
                return
        self.extensions.append((ext_id, payload))

    def get_extension(self, ext_id):
        """Return the payload of extension ``ext_id`` or None."""
        if not self.extension:
            return None
        return next((p for i, p in self.extensions if i == ext_id), None)

    def clone(self):
        return Header(
            version=self.version, padding=self.padding, marker=self.marker,
            payload_type=self.payload_type, sequence_number=self.sequence_number,
            timestamp=self.timestamp, ssrc=self.ssrc, csrc=list(self.csrc),
            extension=self.extension, extension_profile=self.extension_profile,
            extensions=list(self.extensions),
        )


def _parse_extensions(profile: int, body: bytes) -> list[tuple[int, bytes]]:
    found: list[tuple[int, bytes]] = []
    i = 0
    if profile == ONE_BYTE_PROFILE:
        while i < len(body):
            b = body[i]
            i += 1
            if b == 0:
                continue
            ext_id, length = b >> 4, (b & 0x0F) + 1
            if ext_id == 15:
                break
            if i + length > len(body):
                raise ValueError("RTP header extension truncated")
            found.append((ext_id, body[i:i + length]))
            i += length
    elif profile & 0xFFF0 == TWO_BYTE_PROFILE:
        while i < len(body):
            ext_id = body[i]
            i += 1
            if ext_id == 0:
                continue
            if i >= len(body):
                raise ValueError("RTP header extension truncated")
            length = body[i]
            i += 1
            if i + length > len(body):
                raise ValueError("RTP header extension truncated")
            found.append((ext_id, body[i:i + length]))
            i += length
    else:
        found.append((0, body))
    return found


@dataclass
class Packet:
    """An RTP packet: header, payload and optional trailing padding."""

    header: Header = field(default_factory=Header)
    payload: bytes = b""
    padding_size: int = 0

    def marshal(self) -> bytes:
        out = self.header.marshal() + bytes(self.payload)
        if self.header.padding and self.padding_size:
            out += b"\x00" * (self.padding_size - 1) + bytes([self.padding_size])
        return out

    @classmethod
    def unmarshal(cls, data):
        data = bytes(data)
        header, offset = Header._unmarshal_sized(data)
        rest = data[offset:]
        padding = 0
        if header.padding:
            if not rest or rest[-1] == 0 or rest[-1] > len(rest):
                raise ValueError("invalid RTP padding")
            padding = rest[-1]
            rest = rest[:-padding]
        return cls(header=header, payload=rest, padding_size=padding)

    def __str__(self) -> str:
        h = self.header
        return (
            "RTP PACKET:\n"
            f"\tVersion: {h.version}\n"
            f"\tMarker: {h.marker}\n"
            f"\tPayload Type: {h.payload_type}\n"
            f"\tSequence Number: {h.sequence_number}\n"
            f"\tTimestamp: {h.timestamp}\n"
            f"\tSSRC: {h.ssrc} ({h.ssrc:x})\n"
            f"\tPayload Length: {len(self.payload)}\n"
        )


@dataclass
class TransportCCExtension:
    """The transport-wide congestion control header extension."""

    transport_sequence: int = 0

    def marshal(self) -> bytes:
        return struct.pack("!H", self.transport_sequence & 0xFFFF)

    @classmethod
    def unmarshal(cls, data):
        if data is None or len(data) < 2:
            raise ValueError("transport-cc extension too short")
        return cls(struct.unpack_from("!H", bytes(data))[0])