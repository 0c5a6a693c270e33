"""Interceptors for transport-wide congestion control.

The header extension interceptor stamps outgoing RTP packets with
transport-wide sequence numbers; the sender interceptor records incoming
ones and periodically sends feedback reports.
"""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from dataclasses import dataclass

from rtpintercept.interceptor import Interceptor
from rtpintercept.rtp import Header, TransportCCExtension
from rtpintercept.twcc.recorder import Recorder

TRANSPORT_CC_URI = "http://www.ietf.org/id/draft-holmer-rmcat-transport-wide-cc-extensions-01"

_RTP_HEADER_KEY = "rtp_header"


def _rtp_header(attributes: dict, data: bytes) -> Header:
    header = attributes.get(_RTP_HEADER_KEY)
    if header is None:
        header = Header.unmarshal(data)
        attributes[_RTP_HEADER_KEY] = header
    return header


def _extension_id(info) -> int:
    return info.header_extension_id(TRANSPORT_CC_URI) & 0xFF


class HeaderExtensionInterceptorFactory:
    """Builds HeaderExtensionInterceptors."""

    def new_interceptor(self, interceptor_id):
        return HeaderExtensionInterceptor()


class HeaderExtensionInterceptor(Interceptor):
    """Adds an increasing transport-wide sequence number to each outgoing packet."""

    def __init__(self):
        self._next_sequence_nr = 0
        self._counter_lock = threading.Lock()

    def _take_sequence_number(self) -> int:
        with self._counter_lock:
            value = self._next_sequence_nr
            self._next_sequence_nr = (value + 1) & 0xFFFFFFFF
        return value & 0xFFFF

    def bind_local_stream(self, info, writer):
        ext_id = _extension_id(info)
        if ext_id == 0:
            # 0 is not a valid extension id
            return writer

        def write(header, payload, attributes):
            tcc = TransportCCExtension(self._take_sequence_number()).marshal()
            header.set_extension(ext_id, tcc)
            return writer(header, payload, attributes)

        return write


@dataclass(frozen=True)
class _Arrival:
    ssrc: int
    sequence_number: int
    arrival_time: int


_STOP = object()


class SenderInterceptorFactory:
    """Builds twcc SenderInterceptors; ``interval`` is in seconds."""

    def __init__(self, interval=0.1, log=None):
        self.interval = interval
        self.log = log

    def new_interceptor(self, interceptor_id):
        return SenderInterceptor(interval=self.interval, log=self.log)


class SenderInterceptor(Interceptor):
    """Records transport-wide sequence numbers and sends feedback reports."""

    def __init__(self, interval=0.1, log=None):
        self.interval = interval
        self.log = log or logging.getLogger("rtpintercept.twcc.sender")
        self.recorder: Recorder | None = None
        self._start_ns = time.monotonic_ns()
        self._arrivals: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []

    def bind_rtcp_writer(self, writer):
        with self._lock:
            self.recorder = Recorder(random.getrandbits(32))
            if self._closed.is_set():
                return writer
            thread = threading.Thread(target=self._loop, args=(writer,), daemon=True)
            self._threads.append(thread)
            thread.start()
        return writer

    def bind_remote_stream(self, info, reader):
        ext_id = _extension_id(info)
        if ext_id == 0:
            # 0 is not a valid extension id
            return reader

        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            header = _rtp_header(attributes, data)
            ext = header.get_extension(ext_id)
            if ext is not None:
                tcc = TransportCCExtension.unmarshal(ext)
                elapsed_us = (time.monotonic_ns() - self._start_ns) // 1000
                self._arrivals.put(_Arrival(info.ssrc, tcc.transport_sequence, elapsed_us))
            return data, attributes

        return read

    def close(self):
        with self._lock:
            if not self._closed.is_set():
                self._closed.set()
                for _ in self._threads:
                    self._arrivals.put(_STOP)
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _record(self, arrival: _Arrival) -> None:
        self.recorder.record(arrival.ssrc, arrival.sequence_number, arrival.arrival_time)

    def _loop(self, writer) -> None:
        item = self._arrivals.get()
        if item is _STOP:
            return
        self._record(item)

        next_tick = time.monotonic() + self.interval
        while True:
            timeout = next_tick - time.monotonic()
            if timeout <= 0:
                now = time.monotonic()
                next_tick += self.interval
                if next_tick <= now:
                    next_tick = now + self.interval
                packets = self.recorder.build_feedback_packet()
                if packets:
                    try:
                        writer(packets, {})
                    except Exception as exc:  # noqa: BLE001
                        self.log.error("%s", exc)
                continue
            try:
                item = self._arrivals.get(timeout=timeout)
            except queue.Empty:
                continue
            if item is _STOP:
                return
            self._record(item)