import pytest

from rtpintercept import rtcp
from rtpintercept.rtcp import (
    Header,
    NackPair,
    PictureLossIndication,
    ReceiverReport,
    ReceptionReport,
    RecvDelta,
    RunLengthChunk,
    SenderReport,
    StatusVectorChunk,
    TransportLayerCC,
    TransportLayerNack,
    nack_pairs_from_sequence_numbers,
)


def test_header_round_trip():
    h = Header(padding=True, count=15, type=205, length=7)
    assert Header.unmarshal(h.marshal()) == h


def test_header_bad_version():
    with pytest.raises(ValueError):
        Header.unmarshal(b"\x00\xc8\x00\x01")


def test_nack_pairs_from_missing():
    pairs = nack_pairs_from_sequence_numbers([13, 15])
    assert pairs == [NackPair(13, 0b10)]


def test_nack_pair_packet_list():
    assert NackPair(11, 0b1011).packet_list() == [11, 12, 13, 15]


def test_nack_pairs_round_trip_list():
    seqs = [1, 5, 17, 40, 65535]
    pairs = nack_pairs_from_sequence_numbers(seqs)
    assert [s for p in pairs for s in p.packet_list()] == seqs


def test_nack_round_trip():
    p = TransportLayerNack(2, 1, [NackPair(11, 0b1011)])
    assert TransportLayerNack.unmarshal(p.marshal()) == p


def test_pli_round_trip():
    p = PictureLossIndication(123, 456)
    assert rtcp.unmarshal(p.marshal()) == [p]


def test_receiver_report_round_trip():
    rr = ReceiverReport(7, [ReceptionReport(123456, 85, 1, 3, 1875, 1861287936, 65536)])
    assert ReceiverReport.unmarshal(rr.marshal()) == rr


def test_sender_report_round_trip():
    sr = SenderReport(123456, 1 << 40, 2269117121, 10, 20)
    assert SenderReport.unmarshal(sr.marshal()) == sr


def test_total_lost_too_large():
    with pytest.raises(ValueError):
        ReceiverReport(1, [ReceptionReport(total_lost=1 << 24)]).marshal()


@pytest.mark.parametrize(
    "chunk,expected",
    [
        (RunLengthChunk(0, 0x1FFF), b"\x1f\xff"),
        (RunLengthChunk(1, 14), b"\x20\x0e"),
        (RunLengthChunk(2, 7), b"\x40\x07"),
        (StatusVectorChunk(1, [1, 1, 1, 1, 2, 2, 2]), b"\xd5\x6a"),
    ],
)
def test_chunk_bytes(chunk, expected):
    assert chunk.marshal() == expected
    assert type(chunk).unmarshal(expected) == chunk


def test_recv_delta_out_of_range():
    with pytest.raises(ValueError):
        RecvDelta(rtcp.TYPE_TCC_PACKET_RECEIVED_SMALL_DELTA, 256 * 250).marshal()


def test_tcc_round_trip():
    cc = TransportLayerCC(
        sender_ssrc=5000, media_ssrc=5000, base_sequence_number=0,
        packet_status_count=8, reference_time=1, fb_pkt_count=0,
        packet_chunks=[RunLengthChunk(1, 7), RunLengthChunk(2, 1)],
        recv_deltas=[RecvDelta(1, 0)] + [RecvDelta(1, 250)] * 6 + [RecvDelta(2, 250 * 256)],
    )
    data = cc.marshal()
    assert len(data) % 4 == 0
    back = TransportLayerCC.unmarshal(data)
    assert back.header.padding is True
    assert back.header.length == 8
    assert back.packet_chunks == cc.packet_chunks
    assert back.recv_deltas == cc.recv_deltas


def test_compound_unmarshal():
    a = PictureLossIndication(1, 2)
    b = TransportLayerNack(3, 4, [NackPair(9)])
    assert rtcp.unmarshal(a.marshal() + b.marshal()) == [a, b]


def test_unsupported_type():
    with pytest.raises(ValueError):
        rtcp.unmarshal(b"\x80\xcb\x00\x00")