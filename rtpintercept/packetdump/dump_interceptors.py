"""Interceptors that dump the RTP and RTCP packets they see."""

from __future__ import annotations

from rtpintercept import rtcp
from rtpintercept.interceptor import Interceptor
from rtpintercept.packetdump.dumper import PacketDumper
from rtpintercept.rtp import Header

_RTP_HEADER_KEY = "rtp_header"
_RTCP_PACKETS_KEY = "rtcp_packets"


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


class ReceiverInterceptorFactory:
    """Builds ReceiverInterceptors; ``options`` are PacketDumper keyword arguments."""

    def __init__(self, **options):
        self.options = options

    def new_interceptor(self, interceptor_id):
        return ReceiverInterceptor(PacketDumper(**self.options))


class ReceiverInterceptor(Interceptor):
    """Dumps incoming RTP and RTCP packets."""

    def __init__(self, dumper: PacketDumper):
        self.dumper = dumper

    def bind_remote_stream(self, info, reader):
        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            header = _rtp_header(attributes, data)
            self.dumper.log_rtp_packet(header, data[header.marshal_size():], attributes)
            return data, attributes

        return read

    def bind_rtcp_reader(self, reader):
        def read(data, attributes):
            data, attributes = reader(data, attributes)
            if attributes is None:
                attributes = {}
            self.dumper.log_rtcp_packets(_rtcp_packets(attributes, data), attributes)
            return data, attributes

        return read

    def close(self):
        self.dumper.close()


class SenderInterceptorFactory:
    """Builds SenderInterceptors; ``options`` are PacketDumper keyword arguments."""

    def __init__(self, **options):
        self.options = options

    def new_interceptor(self, interceptor_id):
        return SenderInterceptor(PacketDumper(**self.options))


class SenderInterceptor(Interceptor):
    """Dumps outgoing RTP and RTCP packets."""

    def __init__(self, dumper: PacketDumper):
        self.dumper = dumper

    def bind_rtcp_writer(self, writer):
        def write(packets, attributes):
            self.dumper.log_rtcp_packets(packets, attributes)
            return writer(packets, attributes)

        return write

    def bind_local_stream(self, info, writer):
        def write(header, payload, attributes):
            self.dumper.log_rtp_packet(header, payload, attributes)
            return writer(header, payload, attributes)

        return write

    def close(self):
        self.dumper.close()