"""NACK generation for missing RTP packets, and buffers of sent packets."""