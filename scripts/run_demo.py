#!/usr/bin/env python3
"""
Pole Registry — End-to-End Demo

Walks a handful of contributions through the engine:
  1. Register: GPS and manual registrations, a pole with no plate
  2. Resolve: a second contributor lands within 5 m and answers "Same"
  3. Complete: photo added, then three on-site verifications
  4. Report: ledger totals and ranks per contributor

Runs on the in-memory inventory and ledger by default; --db uses
PostgreSQL (see migrations/ and scripts/apply_migrations.py).

Usage:
    python scripts/run_demo.py
    python scripts/run_demo.py --db
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pole_registry import db  # noqa: E402
from pole_registry.algorithms.geo_proximity import GeoPoint, offset_point  # noqa: E402
from pole_registry.algorithms.normalizer import format_identifier, generate_next_number  # noqa: E402
from pole_registry.config import load_config  # noqa: E402
from pole_registry.inventory import InMemoryPoleInventory, PostgresPoleInventory  # noqa: E402
from pole_registry.ledger import InMemoryScoreLedger, PostgresScoreLedger  # noqa: E402
from pole_registry.models import RegistrationAttempt, VerificationRequest  # noqa: E402
from pole_registry.proximity_matcher import Decision  # noqa: E402
from pole_registry.reward_calculator import rank_for_points  # noqa: E402
from pole_registry.workflow import ContributionWorkflow  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Kumamoto station area
ORIGIN = GeoPoint(32.789827, 130.688846)
CONTRIBUTORS = ("alice", "bob", "carol", "dave")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def _attempt(contribution_id: str, contributor_id: str, point: GeoPoint, **kwargs) -> RegistrationAttempt:
    return RegistrationAttempt(
        contribution_id=contribution_id,
        contributor_id=contributor_id,
        latitude=point.latitude,
        longitude=point.longitude,
        **kwargs,
    )


def step_register(workflow: ContributionWorkflow, now: datetime) -> dict[str, str]:
    print("=" * 65)
    print("STEP 1: REGISTRATION")
    print("=" * 65)

    poles: dict[str, str] = {}
    first_number = "２４７エ７１４"
    attempts = [
        ("gps-photo", _attempt("c-001", "alice", ORIGIN, location_source="gps",
                               identifiers=[first_number], plate_count=1,
                               photo_evidence={"plate"})),
        ("gps-no-photo", _attempt("c-002", "alice", offset_point(ORIGIN, north_m=40),
                                  location_source="gps",
                                  identifiers=[generate_next_number("247エ714")],
                                  plate_count=1)),
        ("manual-no-photo", _attempt("c-003", "bob", offset_point(ORIGIN, east_m=120),
                                     location_source="manual",
                                     identifiers=["12A-099"], plate_count=1)),
        ("no-plate", _attempt("c-004", "carol", offset_point(ORIGIN, north_m=-200),
                              location_source="gps", plate_count=0,
                              photo_evidence={"plate"})),
    ]
    for label, attempt in attempts:
        result = workflow.submit(attempt, now=now)
        record = result.record
        poles[label] = record.id
        ids = ", ".join(format_identifier(i) for i in sorted(record.canonical_identifiers))
        pending = result.breakdown.pending[0].to_dict()["points_by_trigger"] if result.breakdown.pending else {}
        print(f"  {label:<16} → {record.id:<12} [{ids}]")
        print(f"  {'':<16}   {result.breakdown.total} pts, pending {pending or '-'}")
    print()
    return poles


def step_resolve(workflow: ContributionWorkflow, now: datetime) -> None:
    print("=" * 65)
    print("STEP 2: IDENTITY RESOLUTION")
    print("=" * 65)

    attempt = _attempt("c-005", "dave", offset_point(ORIGIN, east_m=3),
                       location_source="gps", identifiers=["247 エ 714"],
                       plate_count=1, photo_evidence={"full"})
    pending = workflow.submit(attempt, now=now)
    print(f"  Outcome    : {pending.resolution.outcome.value}")
    for c in pending.resolution.candidates:
        print(f"  Candidate  : {c.record.id} at {c.distance_m:.1f}m")

    target = pending.resolution.candidates[0].record.id
    merged = workflow.submit(attempt, Decision.same(target), now=now)
    print(f"  Decision   : same as {target}")
    print(f"  Outcome    : {merged.resolution.outcome.value} (v{merged.record.version})")
    print(f"  Evidence   : {sorted(e.value for e in merged.record.evidence)}")
    print(f"  Points     : {merged.breakdown.total}")
    print()


def step_complete(workflow: ContributionWorkflow, poles: dict[str, str], now: datetime) -> None:
    print("=" * 65)
    print("STEP 3: COMPLETION BONUSES")
    print("=" * 65)

    gps_pole = workflow.inventory.read(poles["gps-no-photo"])
    photo = _attempt("c-006", "bob", gps_pole.location, kind="photo_add",
                     location_source="gps", photo_evidence={"plate"},
                     is_additional_to_existing_pole=True, target_pole_id=gps_pole.id)
    result = workflow.submit(photo, now=now)
    print(f"  Photo add on {gps_pole.id}: {result.breakdown.total} pts to bob")
    if result.completion:
        print(f"    completion {result.completion.points} pts to {result.completion.recipient_id}")

    manual_pole = workflow.inventory.read(poles["manual-no-photo"])
    for i, verifier in enumerate(("alice", "carol", "dave")):
        request = VerificationRequest(
            verification_id=f"v-{i + 1:03d}",
            pole_id=manual_pole.id,
            verifier_id=verifier,
            latitude=manual_pole.location.latitude,
            longitude=manual_pole.location.longitude,
        )
        outcome = workflow.verify(request, now=now + timedelta(days=61 * i))
        line = f"  Verification {i + 1} by {verifier:<6}: {outcome.award.verifier_points} pts"
        if outcome.award.completion:
            line += f", completion {outcome.award.completion.points} pts to {outcome.award.completion.recipient_id}"
        print(line)
    print()


def step_report(ledger) -> None:
    print("=" * 65)
    print("STEP 4: CONTRIBUTOR REPORT")
    print("=" * 65)
    if not hasattr(ledger, "total_for"):
        print("  (totals are kept in the score_ledger table)")
        return
    for contributor in CONTRIBUTORS:
        total = ledger.total_for(contributor)
        rank = rank_for_points(total)
        print(f"  {contributor:<8} {total:>4} pts  rank {rank.level} ({rank.name})")
    print("=" * 65)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pole Registry end-to-end demo")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to engine_rules.yaml (default: config/engine_rules.yaml)",
    )
    parser.add_argument(
        "--db",
        action="store_true",
        help="Use PostgreSQL instead of the in-memory stores.",
    )
    return parser.parse_args()


def main():
    args = parse_args()
    config = load_config(args.config)

    if args.db and db.init_pool():
        inventory, ledger = PostgresPoleInventory(), PostgresScoreLedger()
    else:
        inventory, ledger = InMemoryPoleInventory(), InMemoryScoreLedger()

    workflow = ContributionWorkflow(inventory, ledger, config)
    now = datetime.now(timezone.utc)

    print()
    print("  Pole Registry — End-to-End Demo")
    print()

    try:
        poles = step_register(workflow, now)
        step_resolve(workflow, now)
        step_complete(workflow, poles, now)
        step_report(ledger)
    finally:
        db.close_pool()


if __name__ == "__main__":
    main()
