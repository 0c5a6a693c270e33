import logging
import queue
from datetime import datetime, timezone

import pytest

from rtpintercept import rtcp
from rtpintercept.interceptor import StreamInfo
from rtpintercept.report.reporters import (
    ReceiverInterceptorFactory,
    SenderInterceptorFactory,
)
from rtpintercept.report.streams import ZERO_TIME, ntp_time
from rtpintercept.rtp import Header, Packet

RTP_TIME = datetime(2009, 11, 10, 23, 0, 0, tzinfo=timezone.utc)
ONE_SECOND_LATER = datetime(2009, 11, 10, 23, 0, 1, tzinfo=timezone.utc)


class MockClock:
    def __init__(self):
        self._now = ZERO_TIME

    def now(self):
        return self._now

    def set_now(self, moment):
        self._now = moment


def _info():
    return StreamInfo(ssrc=123456, clock_rate=90000)


def _passthrough(data, attributes):
    return data, attributes


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def receiver(clock):
    factory = ReceiverInterceptorFactory(
        interval=0.05, now=clock.now, log=logging.getLogger("test")
    )
    interceptor = factory.new_interceptor("")
    yield interceptor
    interceptor.close()


@pytest.fixture
def sender(clock):
    factory = SenderInterceptorFactory(
        interval=0.05, now=clock.now, log=logging.getLogger("test")
    )
    interceptor = factory.new_interceptor("")
    yield interceptor
    interceptor.close()


def _start_reports(interceptor):
    written = queue.Queue()

    def write(packets, attributes):
        written.put(packets)
        return len(packets)

    interceptor.bind_rtcp_writer(write)
    return written


def _receive_rtp(read, seq, timestamp=0):
    read(Packet(header=Header(sequence_number=seq, timestamp=timestamp)).marshal(), None)


def _next_receiver_report(written):
    packets = written.get(timeout=2)
    assert len(packets) == 1
    assert isinstance(packets[0], rtcp.ReceiverReport)
    assert len(packets[0].reports) == 1
    return packets[0].reports[0]


def test_receiver_before_any_packet(receiver):
    receiver.bind_remote_stream(_info(), _passthrough)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(ssrc=123456)


def test_receiver_after_rtp_packets(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    for seq in range(10):
        _receive_rtp(read, seq)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sequence_number=9
    )


def test_receiver_after_rtp_and_rtcp_packets(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    rtcp_read = receiver.bind_rtcp_reader(_passthrough)
    for seq in range(10):
        _receive_rtp(read, seq)
    sr = rtcp.SenderReport(
        ssrc=123456,
        ntp_time=ntp_time(ONE_SECOND_LATER),
        rtp_time=987654321 + 90000,
        packet_count=10,
        octet_count=0,
    )
    rtcp_read(sr.marshal(), None)
    written = _start_reports(receiver)
    report = _next_receiver_report(written)
    assert report == rtcp.ReceptionReport(
        ssrc=123456,
        last_sequence_number=9,
        last_sender_report=1861287936,
        delay=report.delay,
    )


def test_receiver_overflow(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    _receive_rtp(read, 0xFFFF)
    _receive_rtp(read, 0x00)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sequence_number=1 << 16 | 0x0000
    )


def test_receiver_packet_loss(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    rtcp_read = receiver.bind_rtcp_reader(_passthrough)
    _receive_rtp(read, 0x01)
    _receive_rtp(read, 0x03)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sequence_number=0x03, fraction_lost=256 * 1 // 3, total_lost=1
    )

    sr = rtcp.SenderReport(
        ssrc=123456,
        ntp_time=ntp_time(ONE_SECOND_LATER),
        rtp_time=987654321 + 90000,
        packet_count=10,
    )
    rtcp_read(sr.marshal(), None)
    report = _next_receiver_report(written)
    assert report == rtcp.ReceptionReport(
        ssrc=123456,
        last_sequence_number=0x03,
        last_sender_report=1861287936,
        fraction_lost=0,
        total_lost=1,
        delay=report.delay,
    )


def test_receiver_overflow_and_packet_loss(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    _receive_rtp(read, 0xFFFF)
    _receive_rtp(read, 0x01)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456,
        last_sequence_number=1 << 16 | 0x01,
        fraction_lost=256 * 1 // 3,
        total_lost=1,
    )


def test_receiver_reordered_packets(receiver):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    for seq in (0x01, 0x03, 0x02, 0x04):
        _receive_rtp(read, seq)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sequence_number=0x04
    )


def test_receiver_jitter(receiver, clock):
    read = receiver.bind_remote_stream(_info(), _passthrough)
    clock.set_now(RTP_TIME)
    _receive_rtp(read, 0x01, 42378934)
    clock.set_now(ONE_SECOND_LATER)
    _receive_rtp(read, 0x02, 42378934 + 60000)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sequence_number=0x02, jitter=30000 // 16
    )


def test_receiver_delay(receiver, clock):
    receiver.bind_remote_stream(_info(), _passthrough)
    rtcp_read = receiver.bind_rtcp_reader(_passthrough)
    clock.set_now(RTP_TIME)
    sr = rtcp.SenderReport(ssrc=123456, ntp_time=ntp_time(RTP_TIME), rtp_time=987654321)
    data, attributes = rtcp_read(sr.marshal(), None)
    assert attributes["rtcp_packets"] == [sr]
    clock.set_now(ONE_SECOND_LATER)
    written = _start_reports(receiver)
    assert _next_receiver_report(written) == rtcp.ReceptionReport(
        ssrc=123456, last_sender_report=1861222400, delay=65536
    )


def test_receiver_unbind_stops_reports(receiver):
    receiver.bind_remote_stream(_info(), _passthrough)
    receiver.unbind_local_stream(_info())
    written = _start_reports(receiver)
    with pytest.raises(queue.Empty):
        written.get(timeout=0.2)


def test_receiver_closed_sends_nothing(receiver):
    receiver.bind_remote_stream(_info(), _passthrough)
    receiver.close()
    written = queue.Queue()

    def write(packets, attributes):
        written.put(packets)
        return 0

    assert receiver.bind_rtcp_writer(write) is write
    with pytest.raises(queue.Empty):
        written.get(timeout=0.2)


def _next_sender_report(written):
    packets = written.get(timeout=2)
    assert len(packets) == 1
    assert isinstance(packets[0], rtcp.SenderReport)
    return packets[0]


def test_sender_before_any_packet(sender, clock):
    sender.bind_local_stream(_info(), lambda header, payload, attributes: 0)
    clock.set_now(RTP_TIME)
    written = _start_reports(sender)
    assert _next_sender_report(written) == rtcp.SenderReport(
        ssrc=123456,
        ntp_time=ntp_time(clock.now()),
        rtp_time=2269117121,
        packet_count=0,
        octet_count=0,
    )


def test_sender_after_rtp_packets(sender, clock):
    sent = []

    def downstream(header, payload, attributes):
        sent.append(header.sequence_number)
        return len(payload)

    write = sender.bind_local_stream(_info(), downstream)
    for seq in range(10):
        assert write(Header(sequence_number=seq), b"\x00\x00", {}) == 2
    assert sent == list(range(10))

    clock.set_now(RTP_TIME)
    written = _start_reports(sender)
    assert _next_sender_report(written) == rtcp.SenderReport(
        ssrc=123456,
        ntp_time=ntp_time(clock.now()),
        rtp_time=2269117121,
        packet_count=10,
        octet_count=20,
    )


def test_sender_logs_write_failure_and_keeps_running(sender, clock, caplog):
    sender.bind_local_stream(_info(), lambda header, payload, attributes: 0)
    calls = queue.Queue()

    def failing(packets, attributes):
        calls.put(packets)
        raise OSError("broken pipe")

    with caplog.at_level(logging.WARNING, logger="test"):
        sender.bind_rtcp_writer(failing)
        first = calls.get(timeout=2)
        second = calls.get(timeout=2)
    assert isinstance(first[0], rtcp.SenderReport)
    assert isinstance(second[0], rtcp.SenderReport)
    assert any("failed sending" in record.getMessage() for record in caplog.records)