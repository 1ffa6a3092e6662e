"""Shared fixtures: in-memory stores, default config and attempt builders."""

from __future__ import annotations

import itertools

import pytest

from pole_registry.algorithms.geo_proximity import GeoPoint
from pole_registry.config import EngineConfig
from pole_registry.inventory import InMemoryPoleInventory
from pole_registry.ledger import InMemoryScoreLedger
from pole_registry.models import Identifier, PhotoKind, PoleDraft, RegistrationAttempt, Scenario
from pole_registry.workflow import ContributionWorkflow

# A pole outside Kumamoto city
ORIGIN = GeoPoint(32.849066, 130.781983)


@pytest.fixture
def origin() -> GeoPoint:
    return ORIGIN


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def inventory() -> InMemoryPoleInventory:
    return InMemoryPoleInventory()


@pytest.fixture
def ledger() -> InMemoryScoreLedger:
    return InMemoryScoreLedger()


@pytest.fixture
def workflow(inventory, ledger, config) -> ContributionWorkflow:
    return ContributionWorkflow(inventory, ledger, config)


@pytest.fixture
def make_attempt():
    """Build a RegistrationAttempt; defaults to a GPS registration with a plate photo."""
    counter = itertools.count(1)

    def _make(point: GeoPoint = ORIGIN, **overrides) -> RegistrationAttempt:
        data = {
            "contribution_id": f"c-{next(counter):03d}",
            "contributor_id": "alice",
            "latitude": point.latitude,
            "longitude": point.longitude,
            "location_source": "gps",
            "identifiers": ["247エ714"],
            "plate_count": 1,
            "photo_evidence": {"plate"},
        }
        data.update(overrides)
        return RegistrationAttempt(**data)

    return _make


@pytest.fixture
def make_pole(inventory):
    """Create a pole directly in the inventory."""

    def _make(
        point: GeoPoint = ORIGIN,
        identifiers: tuple[str, ...] = ("247エ714",),
        evidence: tuple[str, ...] = ("plate",),
        scenario: Scenario | None = Scenario.GPS_PHOTO,
        contribution_id: str = "c-origin",
        contributor_id: str = "owner",
    ):
        return inventory.create(PoleDraft(
            location=point,
            identifiers=frozenset(Identifier.from_raw(i) for i in identifiers),
            evidence=frozenset(PhotoKind(e) for e in evidence),
            origin_contribution_id=contribution_id,
            origin_contributor_id=contributor_id,
            origin_scenario=scenario,
        ))

    return _make
