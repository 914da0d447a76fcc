"""Gmail mailbox access and ingest."""

from __future__ import annotations

from emailos.gmail.client import GmailClient, Mailbox, normalize
from emailos.gmail.ingest import MailboxIngestor

__all__ = ["GmailClient", "Mailbox", "MailboxIngestor", "normalize"]
