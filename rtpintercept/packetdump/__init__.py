"""Readable dumps of RTP and RTCP traffic."""