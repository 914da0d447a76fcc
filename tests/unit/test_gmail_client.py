"""Tests for Gmail normalization, the API client wrapper and the ingestor."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from emailos.gmail.client import GmailClient, extract_body, normalize
from emailos.gmail.ingest import MailboxIngestor
from emailos.infrastructure.env import ConfigurationError
from emailos.observability.telemetry import get_counters
from tests.fixtures.fakes import FakeMailbox, make_email


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def api_message(message_id="abc", **overrides):
    message = {
        "id": message_id,
        "threadId": "thr-1",
        "snippet": "Please approve the budget",
        "labelIds": ["INBOX", "UNREAD", "IMPORTANT"],
        "payload": {
            "headers": [
                {"name": "From", "value": '"Chen, Amy" <amy@corp.test>'},
                {"name": "To", "value": "me@corp.test"},
                {"name": "Subject", "value": "Budget sign-off"},
                {"name": "Date", "value": "Tue, 10 Feb 2026 09:30:00 +0800"},
                {"name": "In-Reply-To", "value": "<prev@corp.test>"},
            ]
        },
    }
    message.update(overrides)
    return message


def http_error(status=500):
    return HttpError(MagicMock(status=status, reason="error"), b"{}")


def test_normalize_headers_and_labels():
    email = normalize(api_message())

    assert email.id == "abc"
    assert email.thread_id == "thr-1"
    assert email.sender_name == "Chen, Amy"
    assert email.sender_email == "amy@corp.test"
    assert email.to.email == "me@corp.test"
    assert email.subject == "Budget sign-off"
    assert email.is_unread and email.is_important
    assert not email.is_starred
    assert email.in_reply_to == "<prev@corp.test>"
    assert email.date == datetime(2026, 2, 10, 1, 30, tzinfo=timezone.utc)
    assert email.body == ""


def test_normalize_tolerates_missing_fields():
    email = normalize({"id": "bare"})

    assert email.sender is None
    assert email.subject == ""
    assert email.label_ids == ()
    assert email.in_reply_to is None
    assert email.date is None


def test_unparseable_date_is_dropped():
    message = api_message(payload={"headers": [{"name": "Date", "value": "someday"}]})

    assert normalize(message).date is None


def test_extract_body_walks_nested_parts():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {"mimeType": "text/html", "body": {"data": b64("<p>html</p>")}},
            {
                "mimeType": "multipart/alternative",
                "parts": [{"mimeType": "text/plain", "body": {"data": b64("請簽核 plain body")}}],
            },
        ],
    }

    assert extract_body(payload) == "請簽核 plain body"
    assert extract_body({"mimeType": "text/html", "body": {"data": b64("x")}}) == ""
    assert extract_body(None) == ""


@pytest.fixture
def service():
    return MagicMock()


def messages_api(service):
    return service.users.return_value.messages.return_value


def test_list_messages_fetches_metadata_and_skips_failures(service):
    api = messages_api(service)
    api.list.return_value.execute.return_value = {"messages": [{"id": "a"}, {"id": "b"}]}

    def get(**kwargs):
        request = MagicMock()
        if kwargs["id"] == "b":
            request.execute.side_effect = http_error(404)
        else:
            request.execute.return_value = api_message(kwargs["id"])
        return request

    api.get.side_effect = get
    client = GmailClient(service)

    emails = client.list_messages("is:unread", 10)

    assert [e.id for e in emails] == ["a"]
    api.list.assert_called_once_with(userId="me", q="is:unread", maxResults=10)
    assert api.get.call_args_list[0].kwargs["format"] == "metadata"
    assert get_counters("gmail.") == {"gmail.messages.listed": 2, "gmail.get.error": 1}


def test_list_messages_propagates_api_errors(service):
    messages_api(service).list.return_value.execute.side_effect = http_error(503)

    with pytest.raises(HttpError):
        GmailClient(service).list_messages("is:unread", 10)


def test_get_message_full_decodes_body(service):
    message = api_message(payload={"mimeType": "text/plain", "body": {"data": b64("hello")}})
    messages_api(service).get.return_value.execute.return_value = message

    email = GmailClient(service).get_message("abc", full=True)

    assert email.body == "hello"
    assert messages_api(service).get.call_args.kwargs == {"userId": "me", "id": "abc", "format": "full"}


def test_get_thread(service):
    threads = service.users.return_value.threads.return_value
    threads.get.return_value.execute.return_value = {
        "messages": [api_message("m1"), api_message("m2")]
    }

    emails = GmailClient(service).get_thread("thr-1")

    assert [e.id for e in emails] == ["m1", "m2"]


def test_missing_token_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="Gmail token not found"):
        GmailClient.from_token_file(tmp_path / "token.json")


# --- ingest -------------------------------------------------------------------


def test_ingestor_dedupes_across_runs(bus, events):
    first, second = make_email("one"), make_email("two")
    mailbox = FakeMailbox([first, second])
    ingestor = MailboxIngestor(mailbox, bus, batch_size=5)

    assert ingestor.run("is:unread") == [first, second]
    assert ingestor.run("is:unread") == []

    assert mailbox.queries == [("is:unread", 5), ("is:unread", 5)]
    complete = [e.payload for e in events if e.event_type == "ingest.complete"]
    assert complete == [
        {"total": 2, "new": 2, "skipped": 0},
        {"total": 2, "new": 0, "skipped": 2},
    ]
    fetched = [e.payload["email_id"] for e in events if e.event_type == "email.fetched"]
    assert fetched == [first.id, second.id]

    ingestor.reset()
    assert len(ingestor.run()) == 2


def test_ingestor_publishes_error_and_reraises(bus, events):
    ingestor = MailboxIngestor(FakeMailbox(error=ConnectionError("offline")), bus)

    with pytest.raises(ConnectionError):
        ingestor.run("in:inbox")

    assert [e.event_type for e in events] == ["ingest.started", "ingest.error"]
    assert events[-1].payload == {"error": "offline"}


def test_ingestor_thread_and_body_fetches(bus, events):
    email = make_email("Budget", thread_id="thr-9")
    ingestor = MailboxIngestor(FakeMailbox([email]), bus)

    assert ingestor.fetch_thread("thr-9") == [email]
    assert ingestor.fetch_full_message(email.id) == email
    assert ingestor.fetch_full_message("missing") is None

    assert [e.event_type for e in events] == ["thread.fetched", "email.body_fetched"]


def test_ingestor_forgets_ids_after_window(bus, clock):
    email = make_email("Still unread")
    ingestor = MailboxIngestor(
        FakeMailbox([email]), bus, clock=clock, seen_ttl=timedelta(hours=1)
    )

    assert ingestor.run() == [email]
    clock.advance(minutes=59)
    assert ingestor.run() == []
    clock.advance(minutes=2)
    assert ingestor.run() == [email]


def test_ingestor_seen_ids_are_bounded(bus, clock):
    emails = [make_email(f"m{n}") for n in range(3)]
    mailbox = FakeMailbox(emails)
    ingestor = MailboxIngestor(mailbox, bus, clock=clock, seen_max=2)

    assert len(ingestor.run()) == 3
    assert len(ingestor._processed) == 2
