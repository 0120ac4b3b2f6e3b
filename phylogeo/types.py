"""Core data types for PhyloGeo.

This module is the SINGLE SOURCE OF TRUTH for:
  - DensityCategory, DataQuality, AreaType, Priority, SampleQuality enums
  - Ordering/scoring tables keyed by those enums
  - Immutable domain records exchanged between pipeline stages
    (OccurrencePoint → DensityCluster → ConservationArea → PriorityRecord,
     GenomicSample → DiversityProfile / PhylogeneticAnalysis,
     ViabilityResult, CorridorRecommendation)

All records are frozen dataclasses: a stage never mutates what it was
handed, it returns new objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class DensityCategory(str, Enum):
    """Bucket for the number of other points within the density radius.

      ≥ 50 → VERY_HIGH
     20–49 → HIGH
     10–19 → MEDIUM
      3–9  → LOW
      1–2  → VERY_LOW
        0  → ISOLATED (never a cluster member)
    """
    VERY_HIGH = "very_high"
    HIGH      = "high"
    MEDIUM    = "medium"
    LOW       = "low"
    VERY_LOW  = "very_low"
    ISOLATED  = "isolated"


class DataQuality(str, Enum):
    """Record-level quality grade assigned by the ingestion collaborator."""
    EXCELLENT = "excellent"
    GOOD      = "good"
    FAIR      = "fair"
    POOR      = "poor"
    VERY_POOR = "very_poor"


class AreaType(str, Enum):
    DENSITY_CLUSTER = "density_cluster"
    ISOLATED_POINT  = "isolated_point"


class Priority(str, Enum):
    """Categorical conservation priority of an area."""
    CRITICAL = "critical"
    HIGH     = "high"
    MEDIUM   = "medium"
    LOW      = "low"


class ActionPriority(str, Enum):
    """Priority of a recommended action (adds ONGOING for monitoring)."""
    CRITICAL = "critical"
    HIGH     = "high"
    MEDIUM   = "medium"
    ONGOING  = "ongoing"


class SampleQuality(str, Enum):
    """How much genomic evidence backs a per-species diversity profile."""
    INSUFFICIENT = "insufficient"   # zero samples
    LIMITED      = "limited"        # below the reliability threshold
    SUFFICIENT   = "sufficient"


# ═══════════════════════════════════════════════════════════════════════
# ORDERING / SCORING TABLES
# ═══════════════════════════════════════════════════════════════════════

# Higher rank = denser. Used for majority-vote tie breaks.
DENSITY_RANK: Dict[DensityCategory, int] = {
    DensityCategory.ISOLATED:  0,
    DensityCategory.VERY_LOW:  1,
    DensityCategory.LOW:       2,
    DensityCategory.MEDIUM:    3,
    DensityCategory.HIGH:      4,
    DensityCategory.VERY_HIGH: 5,
}

# Extinction-risk contribution of sparse observation density
DENSITY_RISK: Dict[DensityCategory, float] = {
    DensityCategory.VERY_HIGH: 0.1,
    DensityCategory.HIGH:      0.2,
    DensityCategory.MEDIUM:    0.4,
    DensityCategory.LOW:       0.6,
    DensityCategory.VERY_LOW:  0.8,
    DensityCategory.ISOLATED:  0.9,
}

QUALITY_SCORE: Dict[DataQuality, int] = {
    DataQuality.EXCELLENT: 4,
    DataQuality.GOOD:      3,
    DataQuality.FAIR:      2,
    DataQuality.POOR:      1,
    DataQuality.VERY_POOR: 0,
}

ACTION_RANK: Dict[ActionPriority, int] = {
    ActionPriority.CRITICAL: 3,
    ActionPriority.HIGH:     2,
    ActionPriority.MEDIUM:   1,
    ActionPriority.ONGOING:  0,
}

ACTION_TIMELINE: Dict[ActionPriority, str] = {
    ActionPriority.CRITICAL: "Immediate (0-6 months)",
    ActionPriority.HIGH:     "Short-term (6-12 months)",
    ActionPriority.MEDIUM:   "Medium-term (1-2 years)",
    ActionPriority.ONGOING:  "Long-term (ongoing)",
}

NUCLEOTIDES: Tuple[str, ...] = ("A", "T", "C", "G")


def quality_from_score(mean_score: float) -> DataQuality:
    """Bucket a mean QUALITY_SCORE back into a DataQuality grade."""
    if mean_score >= 3.5:
        return DataQuality.EXCELLENT
    if mean_score >= 2.5:
        return DataQuality.GOOD
    if mean_score >= 1.5:
        return DataQuality.FAIR
    if mean_score >= 0.5:
        return DataQuality.POOR
    return DataQuality.VERY_POOR


# ═══════════════════════════════════════════════════════════════════════
# INPUT RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Coordinates:
    lat: float   # decimal degrees N
    lng: float   # decimal degrees E (west is negative)


@dataclass(frozen=True)
class OccurrencePoint:
    """A single georeferenced observation of one species."""
    id: str
    species: str
    coordinates: Coordinates
    year: Optional[int] = None
    data_quality: DataQuality = DataQuality.FAIR
    locality: Optional[str] = None
    institution: Optional[str] = None
    country: Optional[str] = None
    state_province: Optional[str] = None


@dataclass(frozen=True)
class GenomicSample:
    """One sequenced individual plus the population metadata it came with."""
    id: str
    species: str
    sequence: str
    population_size: int = 0
    genetic_diversity: float = 0.5
    location: str = ""
    coordinates: Optional[Coordinates] = None
    threat_level: float = 0.0


@dataclass(frozen=True)
class HabitatProfile:
    """Habitat condition in [0, 1]; None means not surveyed."""
    forest_cover: Optional[float] = None
    fragmentation: Optional[float] = None
    human_disturbance: Optional[float] = None


@dataclass(frozen=True)
class HabitatSurvey:
    """A located habitat assessment supplied by a field collaborator."""
    location: str
    coordinates: Coordinates
    profile: HabitatProfile


# ═══════════════════════════════════════════════════════════════════════
# DENSITY STAGE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PointDensity:
    point_id: str
    nearby_points_count: int
    density_category: DensityCategory


@dataclass(frozen=True)
class DensityCluster:
    """A connected component (size ≥ 2) of the fixed-radius adjacency graph."""
    id: str
    centroid: Coordinates
    member_point_ids: FrozenSet[str]
    avg_density: float
    density_level: DensityCategory
    species: FrozenSet[str]

    @property
    def size(self) -> int:
        return len(self.member_point_ids)


# ═══════════════════════════════════════════════════════════════════════
# AREA STAGE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    def contains(self, coords: Coordinates) -> bool:
        return (self.south <= coords.lat <= self.north
                and self.west <= coords.lng <= self.east)


@dataclass(frozen=True)
class TemporalCoverage:
    min_year: Optional[int] = None
    max_year: Optional[int] = None
    span: int = 0
    coverage: str = "none"


@dataclass(frozen=True)
class ConservationArea:
    """Candidate conservation area derived from a cluster or isolated point."""
    id: str
    name: str
    type: AreaType
    center: Coordinates
    bounds: Bounds
    species: Tuple[str, ...]
    dominant_species: str
    population_size: int
    area: float                    # hectares
    extinction_risk: float
    genetic_diversity: float
    threat_level: float
    priority: Priority
    urgency: float
    total_occurrences: int
    temporal_coverage: TemporalCoverage
    data_quality: DataQuality
    density_level: DensityCategory
    habitat: HabitatProfile = field(default_factory=HabitatProfile)


# ═══════════════════════════════════════════════════════════════════════
# VIABILITY / RANKING STAGE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RecommendedAction:
    priority: ActionPriority
    action: str
    rationale: str


@dataclass(frozen=True)
class ViabilityResult:
    """Monte-Carlo population viability summary for one species."""
    species: str
    extinction_probability: float
    mean_trajectory: Tuple[float, ...]
    recommended_actions: Tuple[RecommendedAction, ...]
    initial_size: float = 0.0
    n_simulations: int = 0
    years_simulated: int = 0


@dataclass(frozen=True)
class PriorityRecord:
    """A ConservationArea re-scored with viability-derived extinction risk."""
    area: ConservationArea
    extinction_risk: float
    urgency: float
    priority: Priority
    conservation_priority: float
    habitat_quality: float

    @property
    def area_id(self) -> str:
        return self.area.id


@dataclass(frozen=True)
class CorridorRecommendation:
    from_area: str
    to_area: str
    distance_km: float
    priority: float


@dataclass(frozen=True)
class ConservationAction:
    """A viability recommendation attached to its species and timeline."""
    species: str
    priority: ActionPriority
    action: str
    rationale: str
    timeline: str
