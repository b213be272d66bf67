"""ActionGate Python SDK."""

__version__ = "0.1.0"

from actiongate_sdk.client import ActionGateClient

__all__ = ["ActionGateClient"]
