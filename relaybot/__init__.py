"""
Relaybot - relays Matrix chat messages to a generative-text model.

This package provides:
- Device pairing and session persistence for a Matrix account
- An event orchestrator that answers each text message with a Gemini reply
- Supervised, optionally bounded, per-message concurrency
"""

__version__ = "0.1.0"
__author__ = "Relaybot Team"
