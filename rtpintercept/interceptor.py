"""Core interceptor types: stream descriptions and the pass-through interceptor.

Readers are callables ``reader(data, attributes) -> (data, attributes)``.
RTP writers are callables ``writer(header, payload, attributes) -> int``.
RTCP writers are callables ``writer(packets, attributes) -> int``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class RTPHeaderExtension:
    """A negotiated RTP header extension (RFC 5285)."""

    uri: str
    id: int


@dataclass(frozen=True)
class RTCPFeedback:
    """An additional RTCP packet type the connection uses, e.g. ``nack``."""

    type: str
    parameter: str = ""


@dataclass
class StreamInfo:
    """Description of a local or remote stream passed to bind/unbind calls."""

    id: str = ""
    attributes: dict = field(default_factory=dict)
    ssrc: int = 0
    payload_type: int = 0
    rtp_header_extensions: list[RTPHeaderExtension] = field(default_factory=list)
    mime_type: str = ""
    clock_rate: int = 0
    channels: int = 0
    sdp_fmtp_line: str = ""
    rtcp_feedback: list[RTCPFeedback] = field(default_factory=list)

    def header_extension_id(self, uri):
        """Return the negotiated id for ``uri``, or 0 when it is not negotiated."""
        return next((ext.id for ext in self.rtp_header_extensions if ext.uri == uri), 0)


class Interceptor:
    """An interceptor that passes everything through unchanged."""

    def bind_rtcp_reader(self, reader):
        return reader

    def bind_rtcp_writer(self, writer):
        return writer

    def bind_local_stream(self, info, writer):
        return writer

    def unbind_local_stream(self, info):
        return None

    def bind_remote_stream(self, info, reader):
        return reader

    def unbind_remote_stream(self, info):
        return None

    def close(self):
        return None