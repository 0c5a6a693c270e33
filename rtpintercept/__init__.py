"""Pluggable RTP/RTCP interceptors for real-time media streams."""

__version__ = "0.1.0"