"""Priority ranking and habitat-corridor recommendation.

Fuses spatial area attributes with per-species viability results:

  habitat_quality  = forest · (1 − fragmentation) · (1 − disturbance)
  spatial_priority = 0.4·(1 − min(pop/1000, 1)) + 0.3·gd + 0.3·threat
  urgency          = 0.4·spatial_priority + 0.4·P(extinction)
                     + 0.2·(1 − habitat_quality)

Records are totally ordered by urgency (descending) with the area id as
tie-break. Corridors link pairs among the top-N areas whose centres lie
less than `corridor_max_km` apart.

The scoring helpers here are also used by the area stage for its
pre-viability urgency estimate.
"""

from __future__ import annotations

import logging
from itertools import combinations
from typing import List, Mapping, Optional, Sequence, Tuple

from phylogeo.config import PrioritySection
from phylogeo.spatial import coordinate_distance_km
from phylogeo.types import (
    ACTION_RANK,
    ACTION_TIMELINE,
    ConservationAction,
    ConservationArea,
    CorridorRecommendation,
    HabitatProfile,
    Priority,
    PriorityRecord,
    ViabilityResult,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# SCORING
# ═══════════════════════════════════════════════════════════════════════

def clamp01(value: Optional[float]) -> float:
    """Clamp to [0, 1]; None (unknown) maps to 0."""
    if value is None:
        return 0.0
    return min(max(float(value), 0.0), 1.0)


def habitat_quality(profile: HabitatProfile) -> float:
    return (clamp01(profile.forest_cover)
            * (1.0 - clamp01(profile.fragmentation))
            * (1.0 - clamp01(profile.human_disturbance)))


def spatial_conservation_priority(
    population_size: float,
    genetic_diversity: float,
    threat_level: float,
    population_scale: float = 1000.0,
) -> float:
    small_population = 1.0 - min(max(population_size, 0.0) / population_scale, 1.0)
    return (0.4 * small_population
            + 0.3 * clamp01(genetic_diversity)
            + 0.3 * clamp01(threat_level))


def compute_urgency(
    spatial_priority: float,
    extinction_probability: float,
    habitat_q: float,
) -> float:
    urgency = (0.4 * spatial_priority
               + 0.4 * clamp01(extinction_probability)
               + 0.2 * (1.0 - clamp01(habitat_q)))
    return clamp01(urgency)


def assign_priority(
    extinction_risk: float,
    population_size: float,
    critical_population: float,
) -> Priority:
    if extinction_risk > 0.7 or population_size < critical_population:
        return Priority.CRITICAL
    if extinction_risk > 0.4:
        return Priority.HIGH
    if extinction_risk > 0.2:
        return Priority.MEDIUM
    return Priority.LOW


# ═══════════════════════════════════════════════════════════════════════
# RANKING
# ═══════════════════════════════════════════════════════════════════════

def rank_priorities(
    areas: Sequence[ConservationArea],
    viability: Mapping[str, ViabilityResult],
    critical_floors: Optional[Mapping[str, float]] = None,
    section: Optional[PrioritySection] = None,
) -> Tuple[PriorityRecord, ...]:
    """Re-score areas with viability results and sort by urgency.

    The extinction probability for an area comes from the ViabilityResult
    of its dominant species. Areas whose species was not simulated keep
    their spatially estimated extinction risk.

    Args:
        areas: Areas from the synthesis stage (not modified).
        viability: Per-species viability results.
        critical_floors: Species → critical population floor.
        section: Priority configuration.

    Returns:
        PriorityRecords ordered by (−urgency, area id).
    """
    s = section or PrioritySection()
    floors = critical_floors or {}
    records: List[PriorityRecord] = []
    for area in areas:
        result = viability.get(area.dominant_species)
        p_ext = (result.extinction_probability if result is not None
                 else area.extinction_risk)
        spatial = spatial_conservation_priority(
            area.population_size, area.genetic_diversity,
            area.threat_level, s.population_scale,
        )
        hq = habitat_quality(area.habitat)
        records.append(PriorityRecord(
            area=area,
            extinction_risk=p_ext,
            urgency=compute_urgency(spatial, p_ext, hq),
            priority=assign_priority(
                p_ext, area.population_size,
                floors.get(area.dominant_species, 0),
            ),
            conservation_priority=spatial,
            habitat_quality=hq,
        ))
    records.sort(key=lambda r: (-r.urgency, r.area_id))
    return tuple(records)


# ═══════════════════════════════════════════════════════════════════════
# CORRIDORS
# ═══════════════════════════════════════════════════════════════════════

def recommend_corridors(
    ranking: Sequence[PriorityRecord],
    section: Optional[PrioritySection] = None,
) -> Tuple[CorridorRecommendation, ...]:
    """Propose corridors between nearby high-priority areas.

    Only the first `top_n` records of `ranking` are considered. Each pair
    closer than `corridor_max_km` yields one recommendation whose priority
    is the mean of the two spatial conservation-priority scores.
    """
    s = section or PrioritySection()
    top = list(ranking[:s.top_n])
    corridors: List[CorridorRecommendation] = []
    for a, b in combinations(top, 2):
        d = coordinate_distance_km(a.area.center, b.area.center)
        if d < s.corridor_max_km:
            corridors.append(CorridorRecommendation(
                from_area=a.area_id,
                to_area=b.area_id,
                distance_km=d,
                priority=(a.conservation_priority + b.conservation_priority) / 2.0,
            ))
    corridors.sort(key=lambda c: (-c.priority, c.from_area, c.to_area))
    logger.info("%d corridor recommendations among top %d areas",
                len(corridors), len(top))
    return tuple(corridors)


# ═══════════════════════════════════════════════════════════════════════
# ACTIONS
# ═══════════════════════════════════════════════════════════════════════

def conservation_actions(
    viability: Mapping[str, ViabilityResult],
) -> Tuple[ConservationAction, ...]:
    """Flatten per-species recommendations, most urgent first.

    Ordering is critical > high > medium > ongoing; within a level,
    species are alphabetical and actions keep their recommended order.
    """
    actions: List[ConservationAction] = []
    for species in sorted(viability):
        for rec in viability[species].recommended_actions:
            actions.append(ConservationAction(
                species=species,
                priority=rec.priority,
                action=rec.action,
                rationale=rec.rationale,
                timeline=ACTION_TIMELINE[rec.priority],
            ))
    actions.sort(key=lambda a: -ACTION_RANK[a.priority])
    return tuple(actions)
