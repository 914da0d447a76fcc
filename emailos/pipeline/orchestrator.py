"""
Sync-cycle orchestrator.

One sync walks the state machine through every stage:

    SYNCING     ingest new messages
    PROCESSING  classify them (sequential, never aborts)
    SUGGESTING  plant seeds and track threads in input order, then run the
                mirror reviews, seed escalation and expiry
    COMPLETE

Any exception moves the cycle to ERROR. The failure is reported in the
returned ``SyncReport``, not re-raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from emailos.bus import EventBus
from emailos.classification.signals import SignalDetector
from emailos.classification.zone_classifier import ClassifiedBatch, ZoneClassifier
from emailos.config import (
    DB_PATH,
    GMAIL_DEFAULT_QUERY,
    GMAIL_TOKEN_PATH,
    REVIEW_WINDOW,
    STORAGE_BACKEND,
)
from emailos.gmail.client import GmailClient, Mailbox
from emailos.gmail.ingest import MailboxIngestor
from emailos.infrastructure.env import ensure_env_loaded
from emailos.llm.provider import LLMProvider, create_provider_from_env
from emailos.mirror.review import Mirror
from emailos.observability.logging import get_logger
from emailos.observability.telemetry import counter, log_event
from emailos.pipeline.state import State, StateMachine
from emailos.seeds.lifecycle import SeedManager
from emailos.storage.models import Review, Seed
from emailos.storage.sink import RecordStore, create_store
from emailos.threads.tracker import ThreadTracker
from emailos.utils.clock import Clock, utcnow

logger = get_logger(__name__)

TRIAGE_MAX_RESULTS = 20


@dataclass
class SyncReport:
    """Outcome of one sync cycle."""

    state: State
    fetched: int = 0
    zones: dict[str, int] = field(default_factory=dict)
    seeds_planted: list[Seed] = field(default_factory=list)
    insights_generated: int = 0
    review: Review | None = None
    seed_review: Review | None = None
    escalated: list[Seed] = field(default_factory=list)
    expired: list[Seed] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    error: str | None = None
    batch: ClassifiedBatch = field(default_factory=ClassifiedBatch)

    @property
    def ok(self) -> bool:
        return self.state == State.COMPLETE


@dataclass
class EscalationReport:
    escalated: list[Seed] = field(default_factory=list)
    expired: list[Seed] = field(default_factory=list)


class Orchestrator:
    """
    Owns the per-process components and sequences them.

    ``ingestor`` may be None for commands that never touch the mailbox
    (seeds, stats, digest, escalate, harvest).
    """

    def __init__(
        self,
        bus: EventBus,
        classifier: ZoneClassifier,
        seeds: SeedManager,
        threads: ThreadTracker,
        mirror: Mirror,
        state: StateMachine,
        store: RecordStore,
        ingestor: MailboxIngestor | None = None,
        review_window: int = REVIEW_WINDOW,
    ) -> None:
        self.bus = bus
        self.classifier = classifier
        self.seeds = seeds
        self.threads = threads
        self.mirror = mirror
        self.state = state
        self.store = store
        self.ingestor = ingestor
        self.review_window = review_window

    @classmethod
    def build(
        cls,
        store: RecordStore,
        mailbox: Mailbox | None = None,
        provider: LLMProvider | None = None,
        bus: EventBus | None = None,
        clock: Clock = utcnow,
        restore: bool = True,
    ) -> Orchestrator:
        """
        Wire every component around one bus and store.

        With ``restore`` the seed list and recent insights are loaded back
        from the store, so ids and insight dedupe continue across runs.
        """
        bus = bus or EventBus(clock=clock)
        seeds = SeedManager(bus, store=store, clock=clock)
        threads = ThreadTracker(bus, store=store, clock=clock)
        if restore:
            seeds.load(store.load_seeds())
            threads.load_insights(store.load_insights())

        return cls(
            bus=bus,
            classifier=ZoneClassifier(
                bus, detector=SignalDetector(), provider=provider, store=store, clock=clock
            ),
            seeds=seeds,
            threads=threads,
            mirror=Mirror(bus, store=store, clock=clock),
            state=StateMachine(bus, clock=clock),
            store=store,
            ingestor=(
                MailboxIngestor(mailbox, bus, clock=clock) if mailbox is not None else None
            ),
        )

    @classmethod
    def from_env(
        cls,
        with_mailbox: bool = True,
        db_path: Path | str = DB_PATH,
        token_path: Path | str = GMAIL_TOKEN_PATH,
    ) -> Orchestrator:
        """
        Build from .env / environment configuration.

        Raises:
            ConfigurationError: Missing Gmail token or invalid LLM settings
        """
        ensure_env_loaded()
        provider = create_provider_from_env()
        store = create_store(STORAGE_BACKEND, db_path)
        mailbox = GmailClient.from_token_file(token_path) if with_mailbox else None
        return cls.build(store, mailbox=mailbox, provider=provider)

    def _require_ingestor(self) -> MailboxIngestor:
        if self.ingestor is None:
            raise RuntimeError("No mailbox configured for this orchestrator")
        return self.ingestor

    def run_sync(self, query: str = GMAIL_DEFAULT_QUERY, max_results: int | None = None) -> SyncReport:
        """
        Run one full cycle.

        Returns:
            SyncReport; ``state`` is COMPLETE on success, ERROR otherwise

        Side Effects:
            - Drives the state machine (and everything the stages publish)
        """
        if self.state.state in (State.COMPLETE, State.ERROR):
            self.state.transition(State.IDLE)
        elif self.state.state != State.IDLE:
            logger.warning("Previous cycle stuck in %s, resetting", self.state.state.value)
            self.state.reset()

        report = SyncReport(state=self.state.state)
        self.state.transition(State.SYNCING, {"query": query})

        try:
            emails = self._require_ingestor().run(query, max_results)
            report.fetched = len(emails)

            self.state.transition(State.PROCESSING, {"emails": len(emails)})
            batch = self.classifier.batch_classify(emails)
            report.batch = batch
            report.zones = {
                "red": len(batch.red),
                "yellow": len(batch.yellow),
                "green": len(batch.green),
            }

            self.state.transition(State.SUGGESTING, report.zones)
            insights_before = len(self.threads.insights)
            for item in batch:
                planted = self.seeds.evaluate(item.email, item.classification)
                if planted is not None:
                    report.seeds_planted.append(planted)
                self.threads.track_thread(item.email, item.classification)
            report.insights_generated = len(self.threads.insights) - insights_before

            if len(batch):
                report.review = self.mirror.review_classifications(
                    self.classifier.recent(self.review_window)
                )
                report.seed_review = self.mirror.review_seeds(self.seeds.stats())

            report.escalated = self.seeds.check_escalation()
            report.expired = self.seeds.expire_overdue()

            self.state.transition(State.COMPLETE, {"fetched": report.fetched})
            counter("sync.completed")
        except Exception as e:
            logger.error("Sync failed: %s", e, exc_info=True)
            counter("sync.failed")
            log_event("sync.failed", error=str(e)[:200], stage=self.state.state.value)
            self.state.transition(State.ERROR, {"error": str(e)})
            report.error = str(e)

        report.state = self.state.state
        report.elapsed_seconds = self.state.elapsed()
        logger.info(
            "Sync %s: %d fetched, %d seed(s) planted, %.2fs",
            report.state.value,
            report.fetched,
            len(report.seeds_planted),
            report.elapsed_seconds,
        )
        return report

    def run_triage(
        self, query: str = GMAIL_DEFAULT_QUERY, max_results: int = TRIAGE_MAX_RESULTS
    ) -> ClassifiedBatch:
        """Ingest and classify only: no seeds, threads, reviews or state changes."""
        emails = self._require_ingestor().run(query, max_results)
        return self.classifier.batch_classify(emails)

    def run_escalation(self) -> EscalationReport:
        """Escalate and expire seeds outside a sync."""
        return EscalationReport(
            escalated=self.seeds.check_escalation(),
            expired=self.seeds.expire_overdue(),
        )

    def stats(self) -> dict[str, Any]:
        return {
            "bus": self.bus.stats(),
            "classifier": self.classifier.stats(),
            "seeds": self.seeds.stats().model_dump(),
            "mirror": {
                "total_cycles": self.mirror.history()["total_cycles"],
                "evolutions": len(self.mirror.history()["evolutions"]),
            },
            "state": self.state.summary(),
            "stored_zones": self.store.zone_counts(),
        }

    def close(self) -> None:
        self.store.close()
