"""Reference-counted copies of sent RTP packets and a ring buffer holding them."""

from __future__ import annotations

import threading
from collections.abc import Callable

from rtpintercept.nack.receive_log import InvalidSizeError

MAX_PAYLOAD_LEN = 1460
UINT16_HALF = 1 << 15
_MASK = 0xFFFF


class PacketReleasedError(RuntimeError):
    """Raised when retaining a packet that has already been released."""


def _noop_release(header, payload) -> None:
    return None


class RetainablePacket:
    """An RTP header and payload with a retain count starting at 1."""

    def __init__(self, header, payload, on_release: Callable | None = None):
        self.header = header
        self.payload = payload
        self.count = 1
        self._on_release = on_release or _noop_release
        self._lock = threading.Lock()

    def retain(self) -> None:
        with self._lock:
            if self.count == 0:
                raise PacketReleasedError("could not retain packet, already released")
            self.count += 1

    def release(self) -> None:
        with self._lock:
            self.count -= 1
            if self.count == 0:
                self._on_release(self.header, self.payload)
                self.header = None
                self.payload = None


class PacketManager:
    """Creates packets holding private copies of the header and payload."""

    def new_packet(self, header, payload) -> RetainablePacket:
        if payload is not None and len(payload) > MAX_PAYLOAD_LEN:
            raise ValueError(f"payload longer than {MAX_PAYLOAD_LEN} bytes")
        copied = bytes(payload) if payload is not None else None
        return RetainablePacket(header.clone(), copied)


class NoOpPacketFactory:
    """Creates packets that share the caller's header and payload objects."""

    def new_packet(self, header, payload) -> RetainablePacket:
        return RetainablePacket(header, payload)


class SendBuffer:
    """Keeps the last ``size`` sent packets, indexed by sequence number."""

    def __init__(self, size: int):
        allowed = [1 << i for i in range(16)]
        if size not in allowed:
            listed = " ".join(str(a) for a in allowed)
            raise InvalidSizeError(
                f"invalid buffer size: {size} is not a valid size, allowed sizes: [{listed}]"
            )
        self.size = size
        self._packets: list[RetainablePacket | None] = [None] * size
        self.last_added = 0
        self.started = False
        self._lock = threading.RLock()

    def _replace(self, index: int, packet: RetainablePacket | None) -> None:
        previous = self._packets[index]
        if previous is not None:
            previous.release()
        self._packets[index] = packet

    def add(self, packet: RetainablePacket) -> None:
        with self._lock:
            seq = packet.header.sequence_number & _MASK
            if not self.started:
                self._packets[seq % self.size] = packet
                self.last_added = seq
                self.started = True
                return

            diff = (seq - self.last_added) & _MASK
            if diff == 0:
                return
            if diff < UINT16_HALF:
                gap = (self.last_added + 1) & _MASK
                while gap != seq:
                    self._replace(gap % self.size, None)
                    gap = (gap + 1) & _MASK

            self._replace(seq % self.size, packet)
            self.last_added = seq

    def get(self, seq: int) -> RetainablePacket | None:
        """Return the packet for ``seq``, retained for the caller, or None."""
        seq &= _MASK
        with self._lock:
            diff = (self.last_added - seq) & _MASK
            if diff >= UINT16_HALF or diff >= self.size:
                return None
            packet = self._packets[seq % self.size]
            if packet is None:
                return None
            header = packet.header
            if header is None or header.sequence_number != seq:
                return None
            try:
                packet.retain()
            except PacketReleasedError:
                return None
            return packet