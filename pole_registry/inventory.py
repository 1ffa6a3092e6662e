"""
Pole Registry — Pole Inventory Adapters

The inventory owns persistent pole records.  The engine only needs five
operations from it:

    match_candidates(location, radius_m)   read-only proximity query
    read(pole_id)                          record with its current version
    create(draft)                          new record at version 1
    write_if_version(pole_id, version, patch)
                                           conditional write; False on conflict
    find_by_identifier(canonical)          exact canonical lookup

plus transaction(), a context manager that makes the writes inside it
all-or-nothing together with the ledger payouts of the same attempt.
InMemoryPoleInventory backs tests and the demo; PostgresPoleInventory runs
against the tables in migrations/001_pole_engine.sql.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, ContextManager, Iterable, Iterator, Protocol

from . import db
from .algorithms.geo_proximity import (
    Candidate,
    GeoPoint,
    bounding_box_filter,
    find_nearby_candidates,
)
from .models import Identifier, PhotoKind, PoleDraft, PolePatch, PoleRecord, Scenario

logger = logging.getLogger(__name__)


class PoleInventory(Protocol):
    def match_candidates(self, location: GeoPoint, radius_m: float) -> list[Candidate]: ...

    def read(self, pole_id: str) -> PoleRecord | None: ...

    def create(self, draft: PoleDraft) -> PoleRecord: ...

    def write_if_version(self, pole_id: str, version: int, patch: PolePatch) -> bool: ...

    def find_by_identifier(self, canonical: str) -> PoleRecord | None: ...

    def transaction(self) -> ContextManager[Any]: ...


# ---------------------------------------------------------------------------
# In-memory inventory
# ---------------------------------------------------------------------------


class InMemoryPoleInventory:
    """Thread-safe dict-backed inventory.  Ids are sequential: pole-000001, ..."""

    def __init__(self, records: Iterable[PoleRecord] = ()):
        self._lock = threading.Lock()
        self._records: dict[str, PoleRecord] = {r.id: r for r in records}
        self._ids = itertools.count(len(self._records) + 1)
        self._local = threading.local()

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> list[PoleRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.id)

    def match_candidates(self, location: GeoPoint, radius_m: float) -> list[Candidate]:
        with self._lock:
            snapshot = list(self._records.values())
        return find_nearby_candidates(location, snapshot, radius_m)

    def read(self, pole_id: str) -> PoleRecord | None:
        with self._lock:
            return self._records.get(pole_id)

    def create(self, draft: PoleDraft) -> PoleRecord:
        with self._lock:
            pole_id = f"pole-{next(self._ids):06d}"
            while pole_id in self._records:
                pole_id = f"pole-{next(self._ids):06d}"
            record = PoleRecord(
                id=pole_id,
                location=draft.location,
                identifiers=draft.identifiers,
                evidence=draft.evidence,
                origin_contribution_id=draft.origin_contribution_id,
                origin_contributor_id=draft.origin_contributor_id,
                origin_scenario=draft.origin_scenario,
            )
            self._records[pole_id] = record
            self._journal(pole_id, None)
        return record

    def write_if_version(self, pole_id: str, version: int, patch: PolePatch) -> bool:
        with self._lock:
            current = self._records.get(pole_id)
            if current is None or current.version != version:
                return False
            self._records[pole_id] = dataclasses.replace(current, **patch.apply(current))
            self._journal(pole_id, current)
            return True

    def find_by_identifier(self, canonical: str) -> PoleRecord | None:
        with self._lock:
            matches = [r for r in self._records.values() if canonical in r.canonical_identifiers]
        return min(matches, key=lambda r: r.id) if matches else None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Undo this thread's creates and writes if the block raises."""
        if getattr(self._local, "journal", None) is not None:
            yield
            return
        journal: list[tuple[str, PoleRecord | None]] = []
        self._local.journal = journal
        try:
            yield
        except BaseException:
            self._undo(journal)
            raise
        finally:
            self._local.journal = None

    def _journal(self, pole_id: str, previous: PoleRecord | None) -> None:
        journal = getattr(self._local, "journal", None)
        if journal is not None:
            journal.append((pole_id, previous))

    def _undo(self, journal: list[tuple[str, PoleRecord | None]]) -> None:
        with self._lock:
            for pole_id, previous in reversed(journal):
                if previous is None:
                    self._records.pop(pole_id, None)
                    continue
                current = self._records.get(pole_id)
                if current is not None and current.version == previous.version + 1:
                    self._records[pole_id] = previous
                else:
                    logger.warning("Pole %s changed again before rollback, left as is", pole_id)
        if journal:
            logger.info("Rolled back %d inventory change(s)", len(journal))


# ---------------------------------------------------------------------------
# PostgreSQL inventory
# ---------------------------------------------------------------------------

_POLE_COLUMNS = """
    id, latitude, longitude, evidence, verification_count,
    last_verified_at, version, origin_contribution_id,
    origin_contributor_id, origin_scenario
"""


def _row_to_record(
    row: dict[str, Any],
    identifiers: list[dict[str, Any]],
    verifications: list[dict[str, Any]],
) -> PoleRecord:
    return PoleRecord(
        id=row["id"],
        location=GeoPoint(float(row["latitude"]), float(row["longitude"])),
        identifiers=frozenset(
            Identifier(canonical=i["canonical"], raw=i["raw"]) for i in identifiers
        ),
        evidence=frozenset(PhotoKind(e) for e in row["evidence"] or []),
        verification_count=row["verification_count"],
        last_verified_at=row["last_verified_at"],
        version=row["version"],
        origin_contribution_id=row["origin_contribution_id"],
        origin_contributor_id=row["origin_contributor_id"],
        origin_scenario=Scenario(row["origin_scenario"]) if row["origin_scenario"] else None,
        verification_ids=frozenset(v["verification_id"] for v in verifications),
        verifier_ids=frozenset(v["verifier_id"] for v in verifications),
    )


class PostgresPoleInventory:
    """Inventory backed by the ``poles``, ``pole_identifiers`` and ``pole_verifications`` tables."""

    def _load(self, cur, rows: list[dict[str, Any]]) -> list[PoleRecord]:
        if not rows:
            return []
        ids = [r["id"] for r in rows]
        cur.execute(
            "SELECT pole_id, canonical, raw FROM pole_identifiers WHERE pole_id = ANY(%s)",
            (ids,),
        )
        idents_by_pole: dict[str, list[dict[str, Any]]] = {}
        for ident in cur.fetchall():
            idents_by_pole.setdefault(ident["pole_id"], []).append(ident)
        cur.execute(
            "SELECT pole_id, verification_id, verifier_id FROM pole_verifications WHERE pole_id = ANY(%s)",
            (ids,),
        )
        verifications_by_pole: dict[str, list[dict[str, Any]]] = {}
        for v in cur.fetchall():
            verifications_by_pole.setdefault(v["pole_id"], []).append(v)
        return [
            _row_to_record(r, idents_by_pole.get(r["id"], []), verifications_by_pole.get(r["id"], []))
            for r in rows
        ]

    def match_candidates(self, location: GeoPoint, radius_m: float) -> list[Candidate]:
        min_lat, max_lat, min_lon, max_lon = bounding_box_filter(location, radius_m)
        with db.get_conn() as conn:
            with db.dict_cursor(conn) as cur:
                cur.execute(
                    f"""
                    SELECT {_POLE_COLUMNS} FROM poles
                    WHERE latitude BETWEEN %s AND %s
                      AND longitude BETWEEN %s AND %s
                    """,
                    (min_lat, max_lat, min_lon, max_lon),
                )
                records = self._load(cur, cur.fetchall())
        candidates = find_nearby_candidates(location, records, radius_m)
        logger.debug(
            "Box query returned %d rows, %d within %.1fm",
            len(records),
            len(candidates),
            radius_m,
        )
        return candidates

    def read(self, pole_id: str) -> PoleRecord | None:
        with db.get_conn() as conn:
            with db.dict_cursor(conn) as cur:
                cur.execute(f"SELECT {_POLE_COLUMNS} FROM poles WHERE id = %s", (pole_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return self._load(cur, [row])[0]

    def create(self, draft: PoleDraft) -> PoleRecord:
        pole_id = str(uuid.uuid4())
        with db.get_conn() as conn:
            with db.dict_cursor(conn) as cur:
                cur.execute(
                    """
                    INSERT INTO poles (id, latitude, longitude, evidence,
                                       origin_contribution_id, origin_contributor_id,
                                       origin_scenario)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        pole_id,
                        draft.location.latitude,
                        draft.location.longitude,
                        sorted(e.value for e in draft.evidence),
                        draft.origin_contribution_id,
                        draft.origin_contributor_id,
                        draft.origin_scenario.value if draft.origin_scenario else None,
                    ),
                )
                self._insert_identifiers(cur, pole_id, draft.identifiers)
        return PoleRecord(
            id=pole_id,
            location=draft.location,
            identifiers=draft.identifiers,
            evidence=draft.evidence,
            origin_contribution_id=draft.origin_contribution_id,
            origin_contributor_id=draft.origin_contributor_id,
            origin_scenario=draft.origin_scenario,
        )

    def write_if_version(self, pole_id: str, version: int, patch: PolePatch) -> bool:
        with db.get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE poles SET
                        evidence = COALESCE(%s, evidence),
                        verification_count = COALESCE(%s, verification_count),
                        last_verified_at = COALESCE(%s, last_verified_at),
                        version = version + 1,
                        updated_at = now()
                    WHERE id = %s AND version = %s
                    """,
                    (
                        sorted(e.value for e in patch.evidence) if patch.evidence is not None else None,
                        patch.verification_count,
                        patch.last_verified_at,
                        pole_id,
                        version,
                    ),
                )
                if cur.rowcount == 0:
                    return False
                if patch.identifiers is not None:
                    self._insert_identifiers(cur, pole_id, patch.identifiers)
                if patch.new_verification is not None:
                    verification_id, verifier_id = patch.new_verification
                    cur.execute(
                        """
                        INSERT INTO pole_verifications
                            (pole_id, verification_id, verifier_id, verified_at)
                        VALUES (%s, %s, %s, COALESCE(%s, now()))
                        """,
                        (pole_id, verification_id, verifier_id, patch.last_verified_at),
                    )
        return True

    def find_by_identifier(self, canonical: str) -> PoleRecord | None:
        with db.get_conn() as conn:
            with db.dict_cursor(conn) as cur:
                cur.execute(
                    f"""
                    SELECT {_POLE_COLUMNS} FROM poles
                    WHERE id = (
                        SELECT pole_id FROM pole_identifiers
                        WHERE canonical = %s ORDER BY pole_id LIMIT 1
                    )
                    """,
                    (canonical,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return self._load(cur, [row])[0]

    def transaction(self) -> ContextManager[Any]:
        return db.transaction()

    @staticmethod
    def _insert_identifiers(cur, pole_id: str, identifiers: Iterable[Identifier]) -> None:
        # Identifier sets only ever grow, so existing rows are left alone.
        for ident in identifiers:
            cur.execute(
                """
                INSERT INTO pole_identifiers (pole_id, canonical, raw)
                VALUES (%s, %s, %s)
                ON CONFLICT (pole_id, canonical) DO NOTHING
                """,
                (pole_id, ident.canonical, ident.raw or ident.canonical),
            )
