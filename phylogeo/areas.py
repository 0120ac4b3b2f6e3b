"""Area synthesis: density clusters and isolated points → ConservationAreas.

Each DensityCluster becomes a `density_cluster` area whose bounds are the
members' bounding box plus a margin; each isolated point becomes an
`isolated_point` area with a smaller buffer around the point.

Derived attributes:
  population_size   Σ density_factor of member species (records → animals)
  area              geodesic bounding-box area (ha)
  extinction_risk   w_d·density_risk + w_p·population_risk + w_q·quality_risk
  genetic_diversity mean of matching GenomicSamples (neutral when none)
  priority          critical / high / medium / low thresholds
  urgency           pre-viability urgency (area risk stands in for P(ext))
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from phylogeo.config import EngineConfig, default_config
from phylogeo.density import DensityAnalysis
from phylogeo.priority import (
    assign_priority,
    compute_urgency,
    habitat_quality,
    spatial_conservation_priority,
)
from phylogeo.spatial import (
    bounding_box,
    bounds_area_hectares,
    buffer_bounds,
    centroid,
    point_bounds,
)
from phylogeo.types import (
    DENSITY_RISK,
    QUALITY_SCORE,
    AreaType,
    Bounds,
    Coordinates,
    ConservationArea,
    DensityCategory,
    GenomicSample,
    HabitatProfile,
    HabitatSurvey,
    OccurrencePoint,
    TemporalCoverage,
    quality_from_score,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# POINT-SET SUMMARIES
# ═══════════════════════════════════════════════════════════════════════

def dominant_species(points: Sequence[OccurrencePoint]) -> str:
    """Most frequent species; ties go to the alphabetically first name."""
    counts = Counter(p.species for p in points)
    return max(sorted(counts), key=counts.__getitem__)


def temporal_coverage(points: Sequence[OccurrencePoint]) -> TemporalCoverage:
    years = [p.year for p in points if p.year is not None]
    if not years:
        return TemporalCoverage()
    lo, hi = min(years), max(years)
    span = hi - lo
    if span > 15:
        label = "excellent"
    elif span > 8:
        label = "good"
    elif span > 3:
        label = "fair"
    else:
        label = "poor"
    return TemporalCoverage(min_year=lo, max_year=hi, span=span, coverage=label)


def mean_quality_score(points: Sequence[OccurrencePoint]) -> float:
    return float(np.mean([QUALITY_SCORE[p.data_quality] for p in points]))


def estimate_population(
    points: Sequence[OccurrencePoint],
    config: EngineConfig,
) -> int:
    """Individuals implied by the records, via per-species density factors."""
    total = sum(config.species_constants(p.species).density_factor for p in points)
    return int(round(total))


def extinction_risk_estimate(
    density_level: DensityCategory,
    population_size: float,
    quality_score: float,
    config: EngineConfig,
) -> float:
    """Weighted spatial extinction-risk estimate, clamped to the risk band."""
    a = config.areas
    density_risk = DENSITY_RISK[density_level]
    population_risk = 1.0 - min(population_size / a.min_viable_population, 1.0)
    quality_risk = 1.0 - quality_score / 4.0
    risk = (a.density_weight * density_risk
            + a.population_weight * population_risk
            + a.quality_weight * quality_risk)
    return float(min(max(risk, a.min_risk), a.max_risk))


# ═══════════════════════════════════════════════════════════════════════
# GENOMIC & HABITAT LOOKUPS
# ═══════════════════════════════════════════════════════════════════════

def _sample_mean(
    samples: Sequence[GenomicSample],
    species: Sequence[str],
    bounds: Bounds,
    attr: str,
    default: float,
) -> float:
    """Mean `attr` of samples for `species`: located in bounds, else species-wide."""
    wanted = set(species)
    matching = [s for s in samples if s.species in wanted]
    if not matching:
        return default
    local = [s for s in matching
             if s.coordinates is not None and bounds.contains(s.coordinates)]
    chosen = local or matching
    return float(np.mean([getattr(s, attr) for s in chosen]))


def habitat_for(bounds: Bounds, surveys: Sequence[HabitatSurvey]) -> HabitatProfile:
    """First survey located inside `bounds`; an empty profile otherwise."""
    for survey in surveys:
        if bounds.contains(survey.coordinates):
            return survey.profile
    return HabitatProfile()


# ═══════════════════════════════════════════════════════════════════════
# NAMING
# ═══════════════════════════════════════════════════════════════════════

def _epithet(species: str) -> str:
    parts = species.split()
    return parts[1] if len(parts) > 1 else species


def cluster_area_name(
    points: Sequence[OccurrencePoint],
    species: Sequence[str],
    density_level: DensityCategory,
    index: int,
) -> str:
    dominant = dominant_species(points)
    localities = [p.locality for p in points if p.locality]
    if localities:
        place = localities[0].split(',')[0].strip()
        if len(species) > 1:
            return f"{place} Multi-species Habitat"
        return f"{place} {_epithet(dominant)} Habitat"
    level = density_level.value.replace('_', ' ')
    if len(species) > 1:
        return f"Multi-species {level} Density Area {index}"
    return f"{_epithet(dominant).capitalize()} {level} Density Area {index}"


# ═══════════════════════════════════════════════════════════════════════
# AREA CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

def _build_area(
    area_id: str,
    name: str,
    area_type: AreaType,
    members: Sequence[OccurrencePoint],
    density_level: DensityCategory,
    bounds: Bounds,
    center: Coordinates,
    samples: Sequence[GenomicSample],
    surveys: Sequence[HabitatSurvey],
    config: EngineConfig,
) -> ConservationArea:
    species = tuple(sorted({p.species for p in members}))
    dominant = dominant_species(members)
    population = estimate_population(members, config)
    quality_score = mean_quality_score(members)
    risk = extinction_risk_estimate(density_level, population, quality_score, config)
    gd = _sample_mean(samples, species, bounds, 'genetic_diversity',
                      config.areas.neutral_genetic_diversity)
    threat = _sample_mean(samples, species, bounds, 'threat_level', 0.0)
    habitat = habitat_for(bounds, surveys)
    spatial = spatial_conservation_priority(
        population, gd, threat, config.priority.population_scale,
    )
    return ConservationArea(
        id=area_id,
        name=name,
        type=area_type,
        center=center,
        bounds=bounds,
        species=species,
        dominant_species=dominant,
        population_size=population,
        area=bounds_area_hectares(bounds),
        extinction_risk=risk,
        genetic_diversity=gd,
        threat_level=threat,
        priority=assign_priority(
            risk, population,
            config.species_constants(dominant).critical_population,
        ),
        urgency=compute_urgency(spatial, risk, habitat_quality(habitat)),
        total_occurrences=len(members),
        temporal_coverage=temporal_coverage(members),
        data_quality=quality_from_score(quality_score),
        density_level=density_level,
        habitat=habitat,
    )


def synthesize_areas(
    analysis: DensityAnalysis,
    samples: Sequence[GenomicSample] = (),
    config: Optional[EngineConfig] = None,
    habitat_surveys: Sequence[HabitatSurvey] = (),
) -> Tuple[ConservationArea, ...]:
    """Build one ConservationArea per cluster and per isolated point.

    Cluster areas come first (in cluster order), then isolated-point areas
    in input order.

    Args:
        analysis: Output of `analyze_density`.
        samples: Genomic samples used for the diversity/threat lookup.
        config: Engine configuration (species table, buffers, weights).
        habitat_surveys: Located habitat assessments.

    Returns:
        Tuple of ConservationAreas; empty when there are no points.
    """
    cfg = config or default_config()
    by_id: Dict[str, OccurrencePoint] = {p.id: p for p in analysis.points}
    areas: List[ConservationArea] = []

    for index, cluster in enumerate(analysis.clusters, start=1):
        members = [by_id[pid] for pid in sorted(cluster.member_point_ids)]
        bounds = buffer_bounds(
            bounding_box([p.coordinates for p in members]),
            cfg.areas.cluster_margin_km,
        )
        areas.append(_build_area(
            area_id=f"density_area_{index}",
            name=cluster_area_name(members, sorted(cluster.species),
                                   cluster.density_level, index),
            area_type=AreaType.DENSITY_CLUSTER,
            members=members,
            density_level=cluster.density_level,
            bounds=bounds,
            center=cluster.centroid,
            samples=samples,
            surveys=habitat_surveys,
            config=cfg,
        ))

    for index, point_id in enumerate(analysis.isolated_point_ids, start=1):
        point = by_id[point_id]
        areas.append(_build_area(
            area_id=f"isolated_area_{index}",
            name=f"{_epithet(point.species).capitalize()} Isolated Habitat {index}",
            area_type=AreaType.ISOLATED_POINT,
            members=[point],
            density_level=analysis.density_of(point_id).density_category,
            bounds=point_bounds(point.coordinates, cfg.areas.isolated_buffer_km),
            center=centroid([point.coordinates]),
            samples=samples,
            surveys=habitat_surveys,
            config=cfg,
        ))

    logger.info("Synthesised %d areas (%d clusters, %d isolated)",
                len(areas), len(analysis.clusters),
                len(analysis.isolated_point_ids))
    return tuple(areas)
