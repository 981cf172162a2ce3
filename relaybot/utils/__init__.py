"""Shared helpers: logging setup, markdown conversion and terminal QR output."""
