"""Transport-wide congestion control sequence numbers and feedback."""