"""
Mailbox ingest with processed-id dedupe.

An ingestor remembers the message ids it has returned, so repeated syncs in
one process only yield messages not seen before. The memory is bounded: ids
age out after a week, or least recently used first once the cache is full.
"""

from __future__ import annotations

from datetime import timedelta

from cachetools import TTLCache

from emailos.bus import EventBus
from emailos.config import (
    GMAIL_DEFAULT_QUERY,
    GMAIL_MAX_RESULTS,
    GMAIL_SEEN_IDS_MAX,
    GMAIL_SEEN_IDS_TTL_HOURS,
)
from emailos.gmail.client import Mailbox
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter, log_event
from emailos.storage.models import Email
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)


class MailboxIngestor:
    def __init__(
        self,
        mailbox: Mailbox,
        bus: EventBus,
        batch_size: int = GMAIL_MAX_RESULTS,
        clock: Clock = utcnow,
        seen_max: int = GMAIL_SEEN_IDS_MAX,
        seen_ttl: timedelta = timedelta(hours=GMAIL_SEEN_IDS_TTL_HOURS),
    ) -> None:
        self.mailbox = mailbox
        self.bus = bus
        self.batch_size = batch_size
        self._clock = clock
        # message id -> True, expiring on the injected clock
        self._processed: TTLCache[str, bool] = TTLCache(
            maxsize=seen_max,
            ttl=seen_ttl.total_seconds(),
            timer=lambda: self._clock().timestamp(),
        )

    def run(self, query: str | None = None, max_results: int | None = None) -> list[Email]:
        """
        Fetch messages and return the ones not returned before.

        Raises:
            Whatever the mailbox raises (after publishing ``ingest.error``)

        Side Effects:
            - Publishes ``ingest.started``, ``email.fetched`` per new message
              and ``ingest.complete``
        """
        query = query or GMAIL_DEFAULT_QUERY
        max_results = max_results or self.batch_size
        self.bus.publish("ingest", "ingest.started", {"query": query, "max_results": max_results})

        try:
            messages = self.mailbox.list_messages(query, max_results)
        except Exception as e:
            logger.error("Ingest failed for query %r: %s", query, e)
            log_event("ingest.error", query=query, error=str(e)[:200])
            self.bus.publish("ingest", "ingest.error", {"error": str(e)})
            raise

        new_messages: list[Email] = []
        for message in messages:
            if message.id in self._processed:
                continue
            self._processed[message.id] = True
            new_messages.append(message)
            self.bus.publish(
                "ingest",
                "email.fetched",
                {"email_id": message.id, "thread_id": message.thread_id, "is_new": True},
            )

        skipped = len(messages) - len(new_messages)
        counter("ingest.fetched", len(new_messages))
        if skipped:
            counter("ingest.skipped", skipped)
        logger.info("Ingested %d new message(s), %d already seen", len(new_messages), skipped)
        self.bus.publish(
            "ingest",
            "ingest.complete",
            {"total": len(messages), "new": len(new_messages), "skipped": skipped},
        )
        return new_messages

    def fetch_thread(self, thread_id: str) -> list[Email]:
        thread = self.mailbox.get_thread(thread_id)
        self.bus.publish(
            "ingest", "thread.fetched", {"thread_id": thread_id, "message_count": len(thread)}
        )
        return thread

    def fetch_full_message(self, message_id: str) -> Email | None:
        message = self.mailbox.get_message(message_id, full=True)
        if message is not None:
            self.bus.publish("ingest", "email.body_fetched", {"message_id": message_id})
        return message

    def reset(self) -> None:
        """Forget processed ids."""
        self._processed.clear()
