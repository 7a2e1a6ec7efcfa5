"""Chat Stream - streaming response aggregation for a chat web client.

Combines httpx for HTTP streaming, asyncio for per-session state machines,
and Pydantic for request, record and configuration validation.

Components:
    - aggregator: stream sessions, framing, transports and configuration
    - models: Request, record and telemetry schemas
"""

__version__ = "0.1.0"
