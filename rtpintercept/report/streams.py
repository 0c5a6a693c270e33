"""Per-stream state for generating RTCP sender and receiver reports."""

from __future__ import annotations

import math
import random
import threading
from datetime import datetime, timedelta, timezone

from rtpintercept import rtcp

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
"""The moment that stands for "never"; durations from it saturate."""

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NTP_EPOCH_OFFSET = 2208988800
_NS_PER_SECOND = 1_000_000_000
_INT64_MAX = (1 << 63) - 1
_INT64_MIN = -(1 << 63)
_U16 = 0xFFFF
_U24 = 0xFFFFFF
_U32 = 0xFFFFFFFF


def _nanoseconds(delta: timedelta) -> int:
    return (delta // timedelta(microseconds=1)) * 1000


def _seconds_between(later: datetime, earlier: datetime) -> float:
    """Seconds from ``earlier`` to ``later``, saturating at the int64 nanosecond range."""
    ns = max(_INT64_MIN, min(_INT64_MAX, _nanoseconds(later - earlier)))
    sign = -1 if ns < 0 else 1
    sec = sign * (abs(ns) // _NS_PER_SECOND)
    nsec = ns - sec * _NS_PER_SECOND
    return float(sec) + nsec / 1e9


def _to_unsigned(value: float, bits: int) -> int:
    """Truncate a float to an unsigned integer of ``bits`` bits, wrapping like a CPU."""
    if not math.isfinite(value) or value >= 2.0**63 or value < -(2.0**63):
        return 0
    return int(value) & ((1 << bits) - 1)


def _is_zero(moment: datetime | None) -> bool:
    return moment is None or moment == ZERO_TIME


def ntp_time(moment):
    """Return ``moment`` as a 64-bit NTP timestamp (32.32 fixed point since 1900)."""
    seconds = _nanoseconds(moment - _UNIX_EPOCH) / 1e9 + _NTP_EPOCH_OFFSET
    integer_part = _to_unsigned(seconds, 32)
    fractional_part = _to_unsigned((seconds - integer_part) * 0xFFFFFFFF, 32)
    return (integer_part << 32) | fractional_part


class ReceiverStream:
    """Reception statistics of one remote stream."""

    SIZE = 128

    def __init__(self, ssrc: int, clock_rate: int, receiver_ssrc: int | None = None):
        self.ssrc = ssrc
        self.receiver_ssrc = random.getrandbits(32) if receiver_ssrc is None else receiver_ssrc
        self.clock_rate = float(clock_rate)
        self._lock = threading.Lock()
        self._received = [False] * self.SIZE
        self.started = False
        self.seqnum_cycles = 0
        self.last_seqnum = 0
        self.last_report_seqnum = 0
        self.last_rtp_time_rtp = 0
        self.last_rtp_time_time: datetime | None = None
        self.jitter = 0.0
        self.last_sender_report = 0
        self.last_sender_report_time: datetime | None = None
        self.total_lost = 0

    def process_rtp(self, now, header):
        seq = header.sequence_number & _U16
        with self._lock:
            self._received[seq % self.SIZE] = True
            if not self.started:
                self.started = True
                self.last_seqnum = seq
                self.last_report_seqnum = (seq - 1) & _U16
                self.last_rtp_time_rtp = header.timestamp
                self.last_rtp_time_time = now
                return

            diff = seq - self.last_seqnum
            if diff > 0 or diff < -0x0FFF:
                if diff < -0x0FFF:
                    self.seqnum_cycles = (self.seqnum_cycles + 1) & _U16
                missing = (seq - self.last_seqnum) & _U16
                for step in range(1, missing):
                    self._received[(self.last_seqnum + step) % self.SIZE] = False
                self.last_seqnum = seq

            # interarrival jitter, RFC 3550 section 6.4.1
            transit = (
                _seconds_between(now, self.last_rtp_time_time) * self.clock_rate
                - (float(header.timestamp) - float(self.last_rtp_time_rtp))
            )
            self.jitter += (abs(transit) - self.jitter) / 16
            self.last_rtp_time_rtp = header.timestamp
            self.last_rtp_time_time = now

    def process_sender_report(self, now, report):
        with self._lock:
            self.last_sender_report = (report.ntp_time >> 16) & _U32
            self.last_sender_report_time = now

    def generate_report(self, now):
        with self._lock:
            total_since_report = (self.last_seqnum - self.last_report_seqnum) & _U16
            lost_since_report = sum(
                not self._received[(self.last_report_seqnum + step) % self.SIZE]
                for step in range(1, total_since_report)
            )
            self.total_lost = (self.total_lost + lost_since_report) & _U32

            lost_since_report = min(lost_since_report, _U24)
            self.total_lost = min(self.total_lost, _U24)

            if total_since_report == 0:
                fraction_lost = 0
            else:
                fraction_lost = _to_unsigned(
                    float((lost_since_report * 256) & _U32) / total_since_report, 8
                )

            if _is_zero(self.last_sender_report_time):
                delay = 0
            else:
                delay = _to_unsigned(
                    _seconds_between(now, self.last_sender_report_time) * 65536, 32
                )

            report = rtcp.ReceiverReport(
                ssrc=self.receiver_ssrc,
                reports=[
                    rtcp.ReceptionReport(
                        ssrc=self.ssrc,
                        last_sequence_number=((self.seqnum_cycles << 16) | self.last_seqnum) & _U32,
                        last_sender_report=self.last_sender_report,
                        fraction_lost=fraction_lost,
                        total_lost=self.total_lost,
                        delay=delay,
                        jitter=_to_unsigned(self.jitter, 32),
                    )
                ],
            )
            self.last_report_seqnum = self.last_seqnum
            return report


class SenderStream:
    """Sending statistics of one local stream."""

    def __init__(self, ssrc: int, clock_rate: int):
        self.ssrc = ssrc
        self.clock_rate = float(clock_rate)
        self._lock = threading.Lock()
        self.last_rtp_time_rtp = 0
        self.last_rtp_time_time: datetime = ZERO_TIME
        self.packet_count = 0
        self.octet_count = 0

    def process_rtp(self, now, header, payload):
        with self._lock:
            # always refresh the time reference to keep extrapolation error small
            self.last_rtp_time_rtp = header.timestamp & _U32
            self.last_rtp_time_time = now
            self.packet_count = (self.packet_count + 1) & _U32
            self.octet_count = (self.octet_count + len(payload or b"")) & _U32

    def generate_report(self, now):
        with self._lock:
            elapsed = _to_unsigned(
                _seconds_between(now, self.last_rtp_time_time) * self.clock_rate, 32
            )
            return rtcp.SenderReport(
                ssrc=self.ssrc,
                ntp_time=ntp_time(now),
                rtp_time=(self.last_rtp_time_rtp + elapsed) & _U32,
                packet_count=self.packet_count,
                octet_count=self.octet_count,
            )