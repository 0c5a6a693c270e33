"""RTCP sender and receiver report interceptors."""