"""
emailos command-line entry point.

Usage:
    emailos sync                 # fetch + classify + seeds + threads + mirror
    emailos triage               # classify unread only
    emailos digest               # hot threads, recent insights, active seeds
    emailos seeds                # active seeds with time remaining
    emailos stats                # bus, classifier, seed, mirror and state stats
    emailos escalate             # escalate / expire seeds without syncing
    emailos harvest s12 --result "replied"
    emailos sync --verbose       # also print every bus event
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from emailos.bus import WILDCARD, BusEvent
from emailos.config import APP_VERSION, GMAIL_DEFAULT_QUERY
from emailos.infrastructure.env import ConfigurationError
from emailos.observability.logging import set_level
from emailos.pipeline.orchestrator import TRIAGE_MAX_RESULTS, Orchestrator, SyncReport
from emailos.seeds.lifecycle import SeedTransitionError
from emailos.storage.models import Seed, Zone
from emailos.utils.clock import utcnow

COMMANDS = ["sync", "triage", "digest", "seeds", "stats", "escalate", "harvest"]
MAILBOX_COMMANDS = {"sync", "triage"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="emailos",
        description="Keyword + LLM email triage: zones, seeds, thread intelligence.",
    )
    parser.add_argument("command", nargs="?", default="sync", choices=COMMANDS)
    parser.add_argument("seed_id", nargs="?", help="Seed id for 'harvest' (e.g. s12)")
    parser.add_argument("--query", default=GMAIL_DEFAULT_QUERY, help="Gmail search query")
    parser.add_argument("--max-results", type=int, default=None, help="Maximum messages to fetch")
    parser.add_argument("--action", default="", help="Harvest outcome: what was done")
    parser.add_argument("--result", default="", help="Harvest outcome: how it went")
    parser.add_argument("--notes", default="", help="Harvest outcome: free-form notes")
    parser.add_argument("--verbose", action="store_true", help="Debug logging + print bus events")
    parser.add_argument("--version", action="version", version=f"emailos {APP_VERSION}")
    return parser


def _print_event(event: BusEvent) -> None:
    payload = json.dumps(event.payload, default=str, ensure_ascii=False)
    print(f"  [{event.source}] {event.event_type} {payload[:100]}")


def _seed_line(seed: Seed) -> str:
    marker = "!" if seed.escalated else "-"
    return f"  {marker} {seed.id} [{seed.type.value}] {seed.zone.value.upper()} {seed.source_subject}"


def _print_sync(report: SyncReport) -> None:
    print(f"Fetched {report.fetched} new email(s)")
    for zone in ("red", "yellow", "green"):
        items = report.batch.in_zone(Zone(zone))
        if not items:
            continue
        print(f"\n{zone.upper()} ({len(items)})")
        for item in items[:5]:
            sender = item.email.sender_name or item.email.sender_email
            print(f"  {sender}: {item.email.subject}")
            print(f"    {item.classification.reasoning}")

    for seed in report.seeds_planted:
        print(f"Planted {seed.type.value}: {seed.source_subject!r} ({seed.shelf_life} shelf life)")

    if report.review is not None:
        if report.review.feedback:
            for fb in report.review.feedback:
                print(f"Mirror: {fb.message}")
        else:
            print("Mirror: all agents within thresholds")
        if report.review.evolution is not None:
            print(f"Evolution (cycle {report.review.evolution.cycle}):")
            for rec in report.review.evolution.recommendations:
                print(f"  [{rec.priority}] {rec.message}")

    if report.escalated:
        print(f"{len(report.escalated)} seed(s) escalated to red")
    if report.expired:
        print(f"{len(report.expired)} seed(s) expired")

    if report.ok:
        print(f"\nSync complete ({report.elapsed_seconds:.2f}s)")
    else:
        print(f"\nSync failed: {report.error}", file=sys.stderr)


def run_command(orchestrator: Orchestrator, args: argparse.Namespace) -> int:
    """Execute one CLI command. Returns the process exit code."""
    command = args.command

    if command == "sync":
        report = orchestrator.run_sync(args.query, args.max_results)
        _print_sync(report)
        return 0 if report.ok else 1

    if command == "triage":
        batch = orchestrator.run_triage(args.query, args.max_results or TRIAGE_MAX_RESULTS)
        for zone in ("red", "yellow", "green"):
            items = batch.in_zone(Zone(zone))
            print(f"{zone.upper()} zone ({len(items)})")
            for item in items:
                when = item.email.date.strftime("%H:%M") if item.email.date else "     "
                sender = (item.email.sender_name or item.email.sender_email)[:25]
                print(f"  {when} | {sender:<25} | {item.email.subject}")
            print()
        return 0

    if command == "digest":
        hot = orchestrator.threads.get_hot_threads(5)
        if hot:
            print("Hot threads:")
            for thread in hot:
                print(
                    f"  [{thread.trajectory.value}] {thread.subject} ({thread.temperature} | "
                    f"{thread.velocity} msg/d | {thread.participant_count} people)"
                )
        else:
            print("No thread data in this session. Run 'emailos sync' first.")
        insights = orchestrator.threads.get_recent_insights(5)
        if insights:
            print("\nRecent insights:")
            for insight in insights:
                print(f"  [{insight.severity.value}] {insight.message}")
        active = orchestrator.seeds.get_active()
        if active:
            print(f"\nActive seeds ({len(active)}):")
            for seed in active[:5]:
                print(f"{_seed_line(seed)} (expires {seed.expires_at:%Y-%m-%d})")
        return 0

    if command == "seeds":
        stats = orchestrator.seeds.stats()
        print(
            f"Total: {stats.total} | Active: {stats.active} | Harvested: {stats.harvested} | "
            f"Expired: {stats.expired} | Escalated: {stats.escalated}\n"
        )
        now = utcnow()
        for seed in orchestrator.seeds.get_active():
            hours = round((seed.expires_at - now).total_seconds() / 3600)
            remaining = f"{hours}h" if hours > 0 else "overdue"
            print(_seed_line(seed))
            print(f"    From: {seed.source_from} | Remaining: {remaining}")
        return 0

    if command == "stats":
        print(json.dumps(orchestrator.stats(), indent=2, default=str))
        return 0

    if command == "escalate":
        result = orchestrator.run_escalation()
        if not result.escalated and not result.expired:
            print("No seeds need escalation.")
        for seed in result.escalated:
            print(f"Escalated {seed.id} [{seed.type.value}] {seed.source_subject!r}")
        for seed in result.expired:
            print(f"Expired {seed.id} [{seed.type.value}] {seed.source_subject!r}")
        return 0

    if command == "harvest":
        if not args.seed_id:
            print("harvest requires a seed id", file=sys.stderr)
            return 2
        outcome = {"action": args.action, "result": args.result, "notes": args.notes}
        try:
            seed = orchestrator.seeds.harvest(args.seed_id, outcome)
        except SeedTransitionError as e:
            print(str(e), file=sys.stderr)
            return 1
        if seed is None:
            print(f"Unknown seed: {args.seed_id}", file=sys.stderr)
            return 1
        print(f"Harvested {seed.id} [{seed.type.value}] {seed.source_subject!r}")
        return 0

    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_level(logging.DEBUG)

    try:
        orchestrator = Orchestrator.from_env(with_mailbox=args.command in MAILBOX_COMMANDS)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.verbose:
        orchestrator.bus.subscribe(WILDCARD, _print_event)

    try:
        return run_command(orchestrator, args)
    finally:
        orchestrator.close()


if __name__ == "__main__":
    sys.exit(main())
