import io

import pytest

from rtpintercept import rtcp
from rtpintercept.interceptor import StreamInfo
from rtpintercept.packetdump.dump_interceptors import (
    ReceiverInterceptorFactory,
    SenderInterceptorFactory,
)
from rtpintercept.rtp import Header, Packet

INFO = StreamInfo(ssrc=123456, clock_rate=90000)


def _passthrough(data, attributes):
    return data, attributes


def _pli_bytes():
    return rtcp.PictureLossIndication(sender_ssrc=123, media_ssrc=456).marshal()


def _rtp_bytes(payload=b""):
    return Packet(header=Header(sequence_number=0), payload=payload).marshal()


def _receive_all(interceptor):
    rtcp_reader = interceptor.bind_rtcp_reader(_passthrough)
    rtp_reader = interceptor.bind_remote_stream(INFO, _passthrough)
    rtcp_reader(_pli_bytes(), None)
    rtp_reader(_rtp_bytes(), None)


def _send_all(interceptor):
    rtcp_writer = interceptor.bind_rtcp_writer(lambda pkts, attrs: len(pkts))
    rtp_writer = interceptor.bind_local_stream(INFO, lambda h, p, a: len(p))
    assert rtcp_writer([rtcp.PictureLossIndication(sender_ssrc=123, media_ssrc=456)], {}) == 1
    assert rtp_writer(Header(sequence_number=0), b"", {}) == 0


def test_receiver_filter_everything_out():
    buf = io.StringIO()
    factory = ReceiverInterceptorFactory(
        rtp_writer=buf, rtcp_writer=buf,
        rtp_filter=lambda p: False, rtcp_filter=lambda ps: False,
    )
    interceptor = factory.new_interceptor("")
    assert buf.getvalue() == ""
    _receive_all(interceptor)
    interceptor.close()
    assert buf.getvalue() == ""


def test_receiver_filter_nothing():
    buf = io.StringIO()
    factory = ReceiverInterceptorFactory(
        rtp_writer=buf, rtcp_writer=buf,
        rtp_filter=lambda p: True, rtcp_filter=lambda ps: True,
    )
    interceptor = factory.new_interceptor("")
    assert buf.getvalue() == ""
    _receive_all(interceptor)
    interceptor.close()
    assert len(buf.getvalue()) > 0


def test_sender_filter_everything_out():
    buf = io.StringIO()
    factory = SenderInterceptorFactory(
        rtp_writer=buf, rtcp_writer=buf,
        rtp_filter=lambda p: False, rtcp_filter=lambda ps: False,
    )
    interceptor = factory.new_interceptor("")
    _send_all(interceptor)
    interceptor.close()
    assert buf.getvalue() == ""


def test_sender_filter_nothing():
    buf = io.StringIO()
    factory = SenderInterceptorFactory(
        rtp_writer=buf, rtcp_writer=buf,
        rtp_filter=lambda p: True, rtcp_filter=lambda ps: True,
    )
    interceptor = factory.new_interceptor("")
    _send_all(interceptor)
    interceptor.close()
    assert len(buf.getvalue()) > 0


def test_receiver_dumps_payload_after_header():
    seen = []
    factory = ReceiverInterceptorFactory(
        rtp_writer=io.StringIO(),
        rtp_formatter=lambda p, a: seen.append((p.header.sequence_number, p.payload)) or "",
    )
    interceptor = factory.new_interceptor("")
    reader = interceptor.bind_remote_stream(INFO, _passthrough)
    raw = _rtp_bytes(b"abc")
    data, attributes = reader(raw, None)
    interceptor.close()
    assert data == raw
    assert isinstance(attributes, dict)
    assert seen == [(0, b"abc")]


def test_receiver_rtcp_packets_parsed():
    seen = []
    factory = ReceiverInterceptorFactory(
        rtcp_writer=io.StringIO(),
        rtcp_formatter=lambda ps, a: seen.extend(ps) or "",
    )
    interceptor = factory.new_interceptor("")
    reader = interceptor.bind_rtcp_reader(_passthrough)
    reader(_pli_bytes(), {})
    interceptor.close()
    assert len(seen) == 1
    assert isinstance(seen[0], rtcp.PictureLossIndication)
    assert seen[0].media_ssrc == 456


def test_receiver_reader_error_propagates():
    interceptor = ReceiverInterceptorFactory(rtp_writer=io.StringIO()).new_interceptor("")

    def failing(data, attributes):
        raise OSError("read failed")

    reader = interceptor.bind_remote_stream(INFO, failing)
    with pytest.raises(OSError):
        reader(b"", None)
    interceptor.close()


def test_sender_writer_error_propagates():
    interceptor = SenderInterceptorFactory(rtp_writer=io.StringIO()).new_interceptor("")

    def failing(header, payload, attributes):
        raise OSError("write failed")

    writer = interceptor.bind_local_stream(INFO, failing)
    with pytest.raises(OSError):
        writer(Header(), b"", {})
    interceptor.close()


def test_each_interceptor_has_own_dumper():
    factory = SenderInterceptorFactory(rtp_writer=io.StringIO())
    first = factory.new_interceptor("a")
    second = factory.new_interceptor("b")
    assert first.dumper is not second.dumper
    first.close()
    second.close()
    assert first.dumper.rtp_writer is second.dumper.rtp_writer