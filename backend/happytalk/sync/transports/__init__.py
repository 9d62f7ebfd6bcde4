"""Live delivery transports.

``PollTransport`` and ``PushTransport`` live in their own modules and are
imported from there; only the shared interface is re-exported here.
"""
from .base import Transport, TransportState

__all__ = ["Transport", "TransportState"]
