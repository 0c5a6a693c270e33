"""Interceptors that periodically send RTCP sender and receiver reports."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone

from rtpintercept import rtcp
from rtpintercept.interceptor import Interceptor
from rtpintercept.report.streams import ReceiverStream, SenderStream
from rtpintercept.rtp import Header

_RTP_HEADER_KEY = "rtp_header"
_RTCP_PACKETS_KEY = "rtcp_packets"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _rtp_header(attributes: dict, data: bytes) -> Header:
    header = attributes.get(_RTP_HEADER_KEY)
    if header is None:
        header = Header.unmarshal(data)
        attributes[_RTP_HEADER_KEY] = header
    return header


def _rtcp_packets(attributes: dict, data: bytes) -> list:
    packets = attributes.get(_RTCP_PACKETS_KEY)
    if packets is None:
        packets = rtcp.unmarshal(data)
        attributes[_RTCP_PACKETS_KEY] = packets
    return packets


class _PeriodicReporter(Interceptor):
    """Runs one report loop per bound RTCP writer until closed."""

    _log_name = "rtpintercept.report"

    def __init__(self, interval=1.0, now=None, log=None):
        self.interval = interval
        self.now = now or _utc_now
        self.log = log or logging.getLogger(self._log_name)
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        self._streams: dict = {}
        self._streams_lock = threading.Lock()

    def bind_rtcp_writer(self, writer):
        with self._lock:
            if self._closed.is_set():
                return writer
            thread = threading.Thread(target=self._loop, args=(writer,), daemon=True)
            self._threads.append(thread)
            thread.start()
        return writer

    def close(self):
        with self._lock:
            self._closed.set()
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _loop(self, writer) -> None:
        while not self._closed.wait(self.interval):
            now = self.now()
            with self._streams_lock:
                streams = list(self._streams.values())
            for stream in streams:
                try:
                    writer([stream.generate_report(now)], {})
                except Exception as exc:  # noqa: BLE001
                    self.log.warning("failed sending: %s", exc)


class ReceiverInterceptorFactory:
    """Builds ReceiverInterceptors; ``interval`` is in seconds, ``now`` returns an aware datetime."""

    def __init__(self, interval=1.0, now=None, log=None):
        self.interval = interval
        self.now = now
        self.log = log

    def new_interceptor(self, interceptor_id):
        return ReceiverInterceptor(interval=self.interval, now=self.now, log=self.log)


class ReceiverInterceptor(_PeriodicReporter):
    """Generates receiver reports for incoming RTP streams."""

    _log_name = "rtpintercept.report.receiver"

    def bind_rtcp_writer(self, writer):
        return super().bind_rtcp_writer(writer)

    def bind_remote_stream(self, info, reader):
        stream = ReceiverStream(info.ssrc, info.clock_rate)
        with self._streams_lock:
            self._streams[info.ssrc] = stream

        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            header = _rtp_header(attributes, data)
            stream.process_rtp(self.now(), header)
            return data, attributes

        return read

    def unbind_local_stream(self, info):
        with self._streams_lock:
            self._streams.pop(info.ssrc, None)

    def bind_rtcp_reader(self, reader):
        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            for packet in _rtcp_packets(attributes, data):
                if not isinstance(packet, rtcp.SenderReport):
                    continue
                with self._streams_lock:
                    stream = self._streams.get(packet.ssrc)
                if stream is not None:
                    stream.process_sender_report(self.now(), packet)
            return data, attributes

        return read

    def close(self):
        super().close()


class SenderInterceptorFactory:
    """Builds SenderInterceptors; ``interval`` is in seconds, ``now`` returns an aware datetime."""

    def __init__(self, interval=1.0, now=None, log=None):
        self.interval = interval
        self.now = now
        self.log = log

    def new_interceptor(self, interceptor_id):
        return SenderInterceptor(interval=self.interval, now=self.now, log=self.log)


class SenderInterceptor(_PeriodicReporter):
    """Generates sender reports for outgoing RTP streams."""

    _log_name = "rtpintercept.report.sender"

    def bind_rtcp_writer(self, writer):
        return super().bind_rtcp_writer(writer)

    def bind_local_stream(self, info, writer):
        stream = SenderStream(info.ssrc, info.clock_rate)
        with self._streams_lock:
            self._streams[info.ssrc] = stream

        def write(header, payload, attributes):
            stream.process_rtp(self.now(), header, payload)
            return writer(header, payload, attributes)

        return write

    def close(self):
        super().close()