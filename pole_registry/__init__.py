"""Pole Registry — Identity Resolution & Contribution Scoring Engine."""

from .errors import (
    PoleRegistryError,
    InvalidAttemptError,
    PoleNotFoundError,
    ConflictError,
    ConcurrentUpdateError,
)
from .config import EngineConfig, load_config
from .models import (
    PhotoKind,
    LocationSource,
    AttemptKind,
    Scenario,
    Identifier,
    PoleRecord,
    RegistrationAttempt,
    VerificationRequest,
    LikeRequest,
)
from .inventory import InMemoryPoleInventory, PostgresPoleInventory
from .ledger import InMemoryScoreLedger, PostgresScoreLedger
from .proximity_matcher import Decision, Outcome, ProximityMatcher, Resolution
from .reward_calculator import RewardCalculator, ScoreBreakdown, compute_points, rank_for_points
from .workflow import ContributionWorkflow

__all__ = [
    "PoleRegistryError",
    "InvalidAttemptError",
    "PoleNotFoundError",
    "ConflictError",
    "ConcurrentUpdateError",
    "EngineConfig",
    "load_config",
    "PhotoKind",
    "LocationSource",
    "AttemptKind",
    "Scenario",
    "Identifier",
    "PoleRecord",
    "RegistrationAttempt",
    "VerificationRequest",
    "LikeRequest",
    "InMemoryPoleInventory",
    "PostgresPoleInventory",
    "InMemoryScoreLedger",
    "PostgresScoreLedger",
    "Decision",
    "Outcome",
    "ProximityMatcher",
    "Resolution",
    "RewardCalculator",
    "ScoreBreakdown",
    "compute_points",
    "rank_for_points",
    "ContributionWorkflow",
]
