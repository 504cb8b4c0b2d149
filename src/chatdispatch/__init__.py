"""Inbound event dispatch and session state for multi-tenant chat sessions."""

from __future__ import annotations

__version__ = "0.4.0"
