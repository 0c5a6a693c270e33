"""Bitmap log of received RTP sequence numbers, used to find gaps to NACK."""

from __future__ import annotations

import threading
from collections.abc import Iterator

UINT16_HALF = 1 << 15
_MASK = 0xFFFF


class InvalidSizeError(ValueError):
    """Raised when a buffer size is not one of the allowed powers of two."""


def _validate_size(size: int, smallest_exponent: int) -> None:
    allowed = [1 << i for i in range(smallest_exponent, 16)]
    if size not in allowed:
        listed = " ".join(str(a) for a in allowed)
        raise InvalidSizeError(
            f"invalid buffer size: {size} is not a valid size, allowed sizes: [{listed}]"
        )


def _seq_range(start: int, stop: int) -> Iterator[int]:
    """Yield 16-bit sequence numbers from ``start`` up to, not including, ``stop``."""
    seq = start & _MASK
    stop &= _MASK
    while seq != stop:
        yield seq
        seq = (seq + 1) & _MASK


def stream_supports_nack(info) -> bool:
    """True when the stream negotiated plain ``nack`` feedback."""
    return any(fb.type == "nack" and fb.parameter == "" for fb in info.rtcp_feedback)


class ReceiveLog:
    """Tracks which of the last ``size`` sequence numbers have been received."""

    def __init__(self, size: int):
        _validate_size(size, 6)
        self.size = size
        self._received = [False] * size
        self.end = 0
        self.started = False
        self.last_consecutive = 0
        self._lock = threading.RLock()

    def add(self, seq: int) -> None:
        seq &= _MASK
        with self._lock:
            if not self.started:
                self._set(seq)
                self.end = seq
                self.started = True
                self.last_consecutive = seq
                return

            diff = (seq - self.end) & _MASK
            if diff == 0:
                return
            if diff < UINT16_HALF:
                # seq is ahead of end: clear stale entries in between
                for i in _seq_range(self.end + 1, seq):
                    self._clear(i)
                self.end = seq
                if (self.last_consecutive + 1) & _MASK == seq:
                    self.last_consecutive = seq
                elif (seq - self.last_consecutive) & _MASK > self.size:
                    self.last_consecutive = (seq - self.size) & _MASK
                    self._fix_last_consecutive()
            elif (self.last_consecutive + 1) & _MASK == seq:
                # seq is behind end and fills the first gap
                self.last_consecutive = seq
                self._fix_last_consecutive()

            self._set(seq)

    def get(self, seq: int) -> bool:
        seq &= _MASK
        with self._lock:
            diff = (self.end - seq) & _MASK
            if diff >= UINT16_HALF or diff >= self.size:
                return False
            return self._is_set(seq)

    def missing_seq_numbers(self, skip_last_n: int) -> list[int]:
        with self._lock:
            until = (self.end - skip_last_n) & _MASK
            if (until - self.last_consecutive) & _MASK >= UINT16_HALF:
                return []
            return [
                seq
                for seq in _seq_range(self.last_consecutive + 1, until + 1)
                if not self._is_set(seq)
            ]

    def _set(self, seq: int) -> None:
        self._received[seq % self.size] = True

    def _clear(self, seq: int) -> None:
        self._received[seq % self.size] = False

    def _is_set(self, seq: int) -> bool:
        return self._received[seq % self.size]

    def _fix_last_consecutive(self) -> None:
        seq = (self.last_consecutive + 1) & _MASK
        stop = (self.end + 1) & _MASK
        while seq != stop and self._is_set(seq):
            seq = (seq + 1) & _MASK
        self.last_consecutive = (seq - 1) & _MASK