from .session_store import Device, SessionStore

__all__ = ["Device", "SessionStore"]
