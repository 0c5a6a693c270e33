import pytest

from rtpintercept.rtp import Header, Packet, TransportCCExtension


def test_basic_header_bytes():
    h = Header(sequence_number=1, timestamp=2, ssrc=3)
    assert h.marshal() == bytes.fromhex("80000001" "00000002" "00000003")
    assert h.marshal_size() == 12


def test_header_round_trip_with_csrc():
    h = Header(marker=True, payload_type=96, sequence_number=65535,
               timestamp=123456, ssrc=99, csrc=[1, 2])
    assert Header.unmarshal(h.marshal()) == h


def test_set_extension_one_byte_round_trip():
    h = Header(sequence_number=7)
    h.set_extension(1, b"\x00\x05")
    assert h.extension_profile == 0xBEDE
    parsed = Header.unmarshal(h.marshal())
    assert parsed.get_extension(1) == b"\x00\x05"
    assert parsed.marshal_size() % 4 == 0


def test_set_extension_replaces():
    h = Header()
    h.set_extension(2, b"a")
    h.set_extension(2, b"bc")
    h.set_extension(3, b"d")
    assert h.get_extension(2) == b"bc"
    assert len(h.extensions) == 2


def test_set_extension_two_byte_for_long_payload():
    h = Header()
    h.set_extension(1, b"x" * 20)
    assert h.extension_profile == 0x1000
    assert Header.unmarshal(h.marshal()).get_extension(1) == b"x" * 20


def test_set_extension_invalid_id():
    h = Header()
    with pytest.raises(ValueError):
        h.set_extension(15, b"a")


def test_get_extension_absent():
    assert Header().get_extension(1) is None


def test_unmarshal_short():
    with pytest.raises(ValueError):
        Header.unmarshal(b"\x80\x00")


def test_clone_independent():
    h = Header(csrc=[1])
    c = h.clone()
    c.csrc.append(2)
    assert h.csrc == [1]
    assert c.sequence_number == h.sequence_number


def test_packet_round_trip_with_padding():
    p = Packet(Header(padding=True, sequence_number=4), b"hello", padding_size=3)
    back = Packet.unmarshal(p.marshal())
    assert back.payload == b"hello"
    assert back.header.sequence_number == 4


def test_transport_cc_round_trip():
    ext = TransportCCExtension(0x1234)
    assert ext.marshal() == b"\x12\x34"
    assert TransportCCExtension.unmarshal(ext.marshal()) == ext


def test_transport_cc_too_short():
    with pytest.raises(ValueError):
        TransportCCExtension.unmarshal(b"\x01")