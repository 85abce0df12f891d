"""Ordered key/value storage engines: in-memory, BitCask and a write-recording wrapper."""