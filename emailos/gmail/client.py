"""Read-only Gmail API client.

Wraps a ``googleapiclient`` Gmail service and normalizes message payloads into
``Email`` models. Token acquisition (the OAuth consent flow) happens outside
this package: ``from_token_file`` only loads an already authorized user token.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from emailos.config import GMAIL_MAX_RESULTS, GMAIL_SCOPES
from emailos.infrastructure.env import ConfigurationError
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter, log_event, time_block
from emailos.storage.models import Email, EmailAddress
from emailos.utils.email import parse_address

logger = get_logger(__name__)

METADATA_HEADERS = ["From", "To", "Subject", "Date", "Message-ID", "In-Reply-To", "References"]


class Mailbox(Protocol):
    """What the ingest layer needs from a mailbox."""

    def list_messages(self, query: str, max_results: int) -> list[Email]: ...

    def get_message(self, message_id: str, full: bool = False) -> Email | None: ...

    def get_thread(self, thread_id: str) -> list[Email]: ...


def _headers(payload: Mapping[str, Any]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for header in payload.get("headers") or []:
        name, value = header.get("name"), header.get("value")
        if name and value:
            headers[name.lower()] = value
    return headers


def _address(value: str) -> EmailAddress | None:
    if not value:
        return None
    name, email = parse_address(value)
    return EmailAddress(name=name, email=email)


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable Date header: %r", value)
        return None


def extract_body(payload: Mapping[str, Any] | None) -> str:
    """First text/plain part found depth-first, base64url-decoded. "" if none."""
    if not payload:
        return ""

    data = (payload.get("body") or {}).get("data")
    if payload.get("mimeType") == "text/plain" and data:
        try:
            padded = data + "=" * (-len(data) % 4)
            return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.warning("Undecodable text/plain part, skipping")
            return ""

    for part in payload.get("parts") or []:
        body = extract_body(part)
        if body:
            return body
    return ""


def normalize(message: Mapping[str, Any], include_body: bool = False) -> Email:
    """
    Convert a Gmail API message resource into an ``Email``.

    Missing headers and fields degrade to empty values rather than raising.
    """
    payload = message.get("payload") or {}
    headers = _headers(payload)
    label_ids = tuple(message.get("labelIds") or ())

    return Email(
        id=message.get("id", ""),
        thread_id=message.get("threadId", ""),
        sender=_address(headers.get("from", "")),
        to=_address(headers.get("to", "")),
        subject=headers.get("subject", ""),
        snippet=message.get("snippet", ""),
        body=extract_body(payload) if include_body else "",
        label_ids=label_ids,
        is_unread="UNREAD" in label_ids,
        is_starred="STARRED" in label_ids,
        is_important="IMPORTANT" in label_ids,
        in_reply_to=headers.get("in-reply-to") or None,
        date=_parse_date(headers.get("date")),
    )


class GmailClient:
    """
    Mailbox implementation backed by the Gmail v1 API.

    Args:
        service: Authenticated ``googleapiclient`` Gmail resource
        user_id: Gmail user id ("me" for the token owner)
    """

    def __init__(self, service: Any, user_id: str = "me") -> None:
        self.service = service
        self.user_id = user_id

    @classmethod
    def from_token_file(cls, token_path: Path | str) -> GmailClient:
        """
        Build a client from an authorized user token file.

        Raises:
            ConfigurationError: Token file missing or not refreshable

        Side Effects:
            - Refreshes an expired access token over the network
        """
        path = Path(token_path)
        if not path.exists():
            raise ConfigurationError(
                f"Gmail token not found at {path}. Authorize once and save the token there "
                "(or set EMAILOS_GMAIL_TOKEN)."
            )

        credentials = Credentials.from_authorized_user_file(str(path), GMAIL_SCOPES)
        if not credentials.valid:
            if credentials.expired and credentials.refresh_token:
                credentials.refresh(Request())
                logger.info("Refreshed Gmail access token from %s", path)
            else:
                raise ConfigurationError(f"Gmail token at {path} is invalid and cannot be refreshed")

        service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        logger.info("Built Gmail API service from %s", path)
        return cls(service)

    def list_messages(self, query: str, max_results: int = GMAIL_MAX_RESULTS) -> list[Email]:
        """
        List messages matching ``query`` and fetch their metadata.

        Messages that fail to fetch individually are skipped.

        Raises:
            HttpError: The list call itself failed
        """
        try:
            with time_block("gmail.list.latency"):
                response = (
                    self.service.users()
                    .messages()
                    .list(userId=self.user_id, q=query, maxResults=max_results)
                    .execute()
                )
        except HttpError as e:
            logger.error("Gmail API error listing messages: %s", e)
            log_event("gmail.list.error", status=e.resp.status, query=query)
            raise

        ids = [m["id"] for m in response.get("messages", []) if m.get("id")]
        counter("gmail.messages.listed", len(ids))

        emails: list[Email] = []
        for message_id in ids:
            email = self.get_message(message_id)
            if email is not None:
                emails.append(email)
        return emails

    def get_message(self, message_id: str, full: bool = False) -> Email | None:
        """
        Fetch one message. Metadata only unless ``full`` (then the body is decoded).

        Returns:
            The email, or None when the fetch failed
        """
        request: dict[str, Any] = {"userId": self.user_id, "id": message_id}
        if full:
            request["format"] = "full"
        else:
            request["format"] = "metadata"
            request["metadataHeaders"] = METADATA_HEADERS

        try:
            message = self.service.users().messages().get(**request).execute()
        except HttpError as e:
            logger.warning("Failed to fetch message %s: %s", message_id, e)
            counter("gmail.get.error")
            return None
        return normalize(message, include_body=full)

    def get_thread(self, thread_id: str) -> list[Email]:
        """
        Raises:
            HttpError: Gmail API failure
        """
        try:
            thread = (
                self.service.users()
                .threads()
                .get(userId=self.user_id, id=thread_id, format="metadata",
                     metadataHeaders=METADATA_HEADERS)
                .execute()
            )
        except HttpError as e:
            logger.error("Gmail API error fetching thread %s: %s", thread_id, e)
            log_event("gmail.thread.error", status=e.resp.status, thread_id=thread_id)
            raise
        return [normalize(m) for m in thread.get("messages", [])]
