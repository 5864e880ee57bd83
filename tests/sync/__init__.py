"""
Test suite for change stream synchronization: event parsing, projection,
the consumer, resume positions, retries, and the service lifecycle.
"""
