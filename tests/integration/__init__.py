"""Integration tests for components working together as a system.

No mocks for the aggregator itself - streams go through the real httpx
transport.

Coverage:
    - NDJSON and SSE streams from a FastAPI backend via ASGITransport
    - Error statuses, connection failures and mid-stream resets
    - Idle timeout and cancellation on a live HTTP response

Slower than unit tests but provides higher confidence.
"""
