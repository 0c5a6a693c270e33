"""Dumps RTP and RTCP packets as text to writable streams from a background thread."""

from __future__ import annotations

import logging
import queue
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass

from rtpintercept.rtp import Packet


def default_rtp_formatter(packet, attributes):
    """Format an RTP packet followed by a newline."""
    return f"{packet}\n"


def default_rtcp_formatter(packets, attributes):
    """Format a batch of RTCP packets as a bracketed list followed by a newline."""
    return "[" + " ".join(str(p) for p in packets) + "]\n"


def _accept_all(_packet) -> bool:
    return True


@dataclass
class _RTPDump:
    attributes: dict | None
    packet: Packet


@dataclass
class _RTCPDump:
    attributes: dict | None
    packets: list


_STOP = object()


class PacketDumper:
    """Writes formatted packets to ``rtp_writer`` and ``rtcp_writer`` (default stdout).

    Filters decide whether a packet is dumped; formatters turn a packet and its
    attributes into the text written, newlines included.
    """

    def __init__(
        self,
        log: logging.Logger | None = None,
        rtp_writer=None,
        rtcp_writer=None,
        rtp_formatter: Callable | None = None,
        rtcp_formatter: Callable | None = None,
        rtp_filter: Callable | None = None,
        rtcp_filter: Callable | None = None,
    ):
        self.log = log or logging.getLogger("rtpintercept.packetdump")
        self.rtp_writer = rtp_writer if rtp_writer is not None else sys.stdout
        self.rtcp_writer = rtcp_writer if rtcp_writer is not None else sys.stdout
        self.rtp_formatter = rtp_formatter or default_rtp_formatter
        self.rtcp_formatter = rtcp_formatter or default_rtcp_formatter
        self.rtp_filter = rtp_filter or _accept_all
        self.rtcp_filter = rtcp_filter or _accept_all
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _submit(self, item) -> None:
        with self._lock:
            if not self._closed:
                self._queue.put(item)

    def log_rtp_packet(self, header, payload, attributes):
        """Queue an RTP packet for dumping; ignored once the dumper is closed."""
        packet = Packet(header=header.clone(), payload=bytes(payload) if payload is not None else b"")
        self._submit(_RTPDump(attributes, packet))

    def log_rtcp_packets(self, packets, attributes):
        """Queue a batch of RTCP packets for dumping; ignored once closed."""
        self._submit(_RTCPDump(attributes, list(packets)))

    def close(self):
        """Stop the dumper after everything already queued has been written."""
        with self._lock:
            if not self._closed:
                self._closed = True
                self._queue.put(_STOP)
        self._thread.join()

    def _loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            if isinstance(item, _RTPDump):
                if self.rtp_filter(item.packet):
                    try:
                        self.rtp_writer.write(self.rtp_formatter(item.packet, item.attributes))
                    except Exception as exc:  # noqa: BLE001
                        self.log.error("could not dump RTP packet %s", exc)
            elif self.rtcp_filter(item.packets):
                try:
                    self.rtcp_writer.write(self.rtcp_formatter(item.packets, item.attributes))
                except Exception as exc:  # noqa: BLE001
                    self.log.error("could not dump RTCP packet %s", exc)