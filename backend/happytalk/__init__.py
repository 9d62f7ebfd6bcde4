"""HappyTalk: real-time chat backend and message synchronization client."""

__version__ = "0.1.0"
