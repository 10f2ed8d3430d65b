"""Attachment to the application's real-time session."""

from __future__ import annotations

from cmdrelay.session.client import SessionAttachmentClient, SessionHandle

__all__ = ["SessionAttachmentClient", "SessionHandle"]
