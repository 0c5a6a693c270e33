"""Interceptor that watches incoming RTP and sends NACKs for missing packets."""

from __future__ import annotations

import logging
import random
import threading

from rtpintercept import rtcp
from rtpintercept.interceptor import Interceptor
from rtpintercept.nack.receive_log import ReceiveLog, stream_supports_nack
from rtpintercept.rtp import Header

_RTP_HEADER_KEY = "rtp_header"


def _rtp_header(attributes: dict, data: bytes) -> Header:
    header = attributes.get(_RTP_HEADER_KEY)
    if header is None:
        header = Header.unmarshal(data)
        attributes[_RTP_HEADER_KEY] = header
    return header


class GeneratorInterceptorFactory:
    """Builds GeneratorInterceptors with the given settings.

    ``size`` must be a power of two from 64 to 32768; ``interval`` is in seconds.
    """

    def __init__(self, size=512, skip_last_n=0, interval=0.1, log=None):
        self.size = size
        self.skip_last_n = skip_last_n
        self.interval = interval
        self.log = log

    def new_interceptor(self, interceptor_id):
        # Validates the size before any stream is bound.
        ReceiveLog(self.size)
        return GeneratorInterceptor(
            size=self.size,
            skip_last_n=self.skip_last_n,
            interval=self.interval,
            log=self.log or logging.getLogger("rtpintercept.nack.generator"),
        )


class GeneratorInterceptor(Interceptor):
    """Periodically sends transport-layer NACKs for gaps in received streams."""

    def __init__(self, size=512, skip_last_n=0, interval=0.1, log=None):
        ReceiveLog(size)
        self.size = size
        self.skip_last_n = skip_last_n
        self.interval = interval
        self.log = log or logging.getLogger("rtpintercept.nack.generator")
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        self._receive_logs: dict[int, ReceiveLog] = {}
        self._logs_lock = threading.Lock()

    def bind_rtcp_writer(self, writer):
        with self._lock:
            if self._closed.is_set():
                return writer
            thread = threading.Thread(target=self._loop, args=(writer,), daemon=True)
            self._threads.append(thread)
            thread.start()
        return writer

    def bind_remote_stream(self, info, reader):
        if not stream_supports_nack(info):
            return reader

        receive_log = ReceiveLog(self.size)
        with self._logs_lock:
            self._receive_logs[info.ssrc] = receive_log

        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            header = _rtp_header(attributes, data)
            receive_log.add(header.sequence_number)
            return data, attributes

        return read

    def unbind_local_stream(self, info):
        with self._logs_lock:
            self._receive_logs.pop(info.ssrc, None)

    def close(self):
        with self._lock:
            self._closed.set()
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _loop(self, writer) -> None:
        sender_ssrc = random.getrandbits(32)
        while not self._closed.wait(self.interval):
            with self._logs_lock:
                for ssrc, receive_log in list(self._receive_logs.items()):
                    missing = receive_log.missing_seq_numbers(self.skip_last_n)
                    if not missing:
                        continue
                    nack = rtcp.TransportLayerNack(
                        sender_ssrc=sender_ssrc,
                        media_ssrc=ssrc,
                        nacks=rtcp.nack_pairs_from_sequence_numbers(missing),
                    )
                    try:
                        writer([nack], {})
                    except Exception as exc:  # noqa: BLE001
                        self.log.warning("failed sending nack: %s", exc)