"""Unit tests for individual components in isolation.

Ensures fast execution with no network.

Coverage:
    - framing: Line reassembly, record parsing, delta computation
    - config: Environment loading and validation
    - session: Completion detection, cancellation, transport release

Sessions are driven by scripted in-memory transports. Follows single
responsibility per test function. Leverages pytest-check for multiple
assertions per test.
"""
