"""ConservationEngine: orchestrates the analysis stages behind a cache.

Data flow:
  points  → density → areas ─┐
  samples → viability ───────┴→ priority ranking, corridors, actions
  samples → diversity
  samples → phylogeny

Each query computes its result once and stores it in an AnalysisCache
owned by the engine. Replacing any input invalidates the whole cache.
Every query seeds fresh RNG streams from the engine seed, so results do
not depend on the order queries are made in.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from phylogeo.areas import synthesize_areas
from phylogeo.config import EngineConfig, default_config, validate_config
from phylogeo.density import DensityAnalysis, analyze_density
from phylogeo.diversity import DiversityAnalysis, analyze_diversity
from phylogeo.phylogeny import PhylogeneticAnalysis, build_phylogeny
from phylogeo.priority import conservation_actions, rank_priorities, recommend_corridors
from phylogeo.rng import create_rng_hierarchy
from phylogeo.types import (
    ConservationAction,
    ConservationArea,
    CorridorRecommendation,
    GenomicSample,
    HabitatSurvey,
    OccurrencePoint,
    Priority,
    PriorityRecord,
    ViabilityResult,
)
from phylogeo.viability import run_viability_analysis

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# CACHE
# ═══════════════════════════════════════════════════════════════════════

CONSERVATION = "conservation"
DIVERSITY = "diversity"
PHYLOGENETIC = "phylogenetic"


class AnalysisCache:
    """Thread-safe memo of analysis results keyed by analysis kind.

    There is no per-key invalidation: any input change clears everything.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: Dict[str, Any] = {}

    def get_or_compute(self, kind: str, compute: Callable[[], Any]) -> Any:
        """Return the cached value, computing and storing it on a miss.

        The lock is held during computation so concurrent callers never
        compute the same kind twice.
        """
        with self._lock:
            if kind not in self._results:
                self._results[kind] = compute()
            return self._results[kind]

    def invalidate(self) -> None:
        with self._lock:
            self._results.clear()

    def __contains__(self, kind: str) -> bool:
        with self._lock:
            return kind in self._results


# ═══════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SpatialAnalysis:
    density: DensityAnalysis
    areas: Tuple[ConservationArea, ...]
    corridors: Tuple[CorridorRecommendation, ...]


@dataclass(frozen=True)
class ConservationAnalysis:
    spatial: SpatialAnalysis
    viability: Dict[str, ViabilityResult]
    priority_ranking: Tuple[PriorityRecord, ...]
    actions: Tuple[ConservationAction, ...]


@dataclass(frozen=True)
class Alert:
    level: str          # "critical" | "warning"
    species: str
    message: str
    value: str


@dataclass(frozen=True)
class DashboardSummary:
    species_count: int
    sample_count: int
    occurrence_count: int
    area_count: int
    critical_area_count: int
    mean_extinction_probability: float
    alerts: Tuple[Alert, ...] = field(default_factory=tuple)


# ═══════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════

class ConservationEngine:
    """Batch conservation analytics over occurrences and genomic samples.

    Args:
        points: Validated occurrence records.
        samples: Validated genomic samples.
        config: Engine configuration; defaults to `default_config()`.
        habitat_surveys: Located habitat assessments adopted by areas.
        seed: Master seed; overrides `config.analysis.seed` when given.

    Raises:
        ValueError: If the configuration or seed is invalid.
    """

    def __init__(
        self,
        points: Sequence[OccurrencePoint] = (),
        samples: Sequence[GenomicSample] = (),
        config: Optional[EngineConfig] = None,
        habitat_surveys: Sequence[HabitatSurvey] = (),
        seed: Optional[int] = None,
    ) -> None:
        self.config = config or default_config()
        validate_config(self.config)
        self.seed = self.config.analysis.seed if seed is None else int(seed)
        if self.seed < 0:
            raise ValueError(f"seed must be non-negative, got {self.seed}")
        self.points: Tuple[OccurrencePoint, ...] = tuple(points)
        self.samples: Tuple[GenomicSample, ...] = tuple(samples)
        self.habitat_surveys: Tuple[HabitatSurvey, ...] = tuple(habitat_surveys)
        self.cache = AnalysisCache()

    # ── input management ────────────────────────────────────────────

    def update_inputs(
        self,
        points: Optional[Sequence[OccurrencePoint]] = None,
        samples: Optional[Sequence[GenomicSample]] = None,
        habitat_surveys: Optional[Sequence[HabitatSurvey]] = None,
    ) -> None:
        """Replace any supplied inputs and drop every cached result."""
        if points is not None:
            self.points = tuple(points)
        if samples is not None:
            self.samples = tuple(samples)
        if habitat_surveys is not None:
            self.habitat_surveys = tuple(habitat_surveys)
        self.invalidate()

    def invalidate(self) -> None:
        self.cache.invalidate()
        logger.debug("Analysis cache invalidated")

    @property
    def species(self) -> Tuple[str, ...]:
        """All species seen in points or samples, alphabetical."""
        return tuple(sorted({p.species for p in self.points}
                            | {s.species for s in self.samples}))

    # ── queries ─────────────────────────────────────────────────────

    def get_diversity_analysis(self) -> DiversityAnalysis:
        return self.cache.get_or_compute(DIVERSITY, self._compute_diversity)

    def get_phylogenetic_analysis(self) -> PhylogeneticAnalysis:
        return self.cache.get_or_compute(PHYLOGENETIC, self._compute_phylogeny)

    def get_conservation_analysis(self) -> ConservationAnalysis:
        return self.cache.get_or_compute(CONSERVATION, self._compute_conservation)

    def get_dashboard_summary(self) -> DashboardSummary:
        """Headline counts plus extinction and low-diversity alerts."""
        conservation = self.get_conservation_analysis()
        diversity = self.get_diversity_analysis()

        alerts = []
        for name, result in conservation.viability.items():
            if result.extinction_probability > 0.5:
                alerts.append(Alert(
                    level="critical",
                    species=name,
                    message=f"High extinction risk detected for {name}",
                    value=f"{result.extinction_probability * 100:.1f}% "
                          f"extinction probability",
                ))
        for name, profile in diversity.by_species.items():
            if profile.sample_size > 0 and profile.shannon_index < 0.3:
                alerts.append(Alert(
                    level="warning",
                    species=name,
                    message=f"Low genetic diversity in {name}",
                    value=f"Shannon Index: {profile.shannon_index:.3f}",
                ))

        probs = [r.extinction_probability for r in conservation.viability.values()]
        return DashboardSummary(
            species_count=len(self.species),
            sample_count=len(self.samples),
            occurrence_count=len(self.points),
            area_count=len(conservation.spatial.areas),
            critical_area_count=sum(
                1 for r in conservation.priority_ranking
                if r.priority is Priority.CRITICAL
            ),
            mean_extinction_probability=(sum(probs) / len(probs)) if probs else 0.0,
            alerts=tuple(alerts),
        )

    # ── stage wiring ────────────────────────────────────────────────

    def _compute_diversity(self) -> DiversityAnalysis:
        return analyze_diversity(self.samples, self.config)

    def _compute_phylogeny(self) -> PhylogeneticAnalysis:
        rng = create_rng_hierarchy(self.seed)['bootstrap']
        return build_phylogeny(self.samples, self.config, rng)

    def _compute_conservation(self) -> ConservationAnalysis:
        cfg = self.config
        density = analyze_density(self.points, cfg.density)
        areas = synthesize_areas(density, self.samples, cfg, self.habitat_surveys)

        species = sorted({s.species for s in self.samples}
                         | {a.dominant_species for a in areas})
        rngs = create_rng_hierarchy(self.seed, species)
        viability = run_viability_analysis(self.samples, areas, cfg,
                                           species=species, rngs=rngs)

        floors = {a.dominant_species:
                  cfg.species_constants(a.dominant_species).critical_population
                  for a in areas}
        ranking = rank_priorities(areas, viability, floors, cfg.priority)
        corridors = recommend_corridors(ranking, cfg.priority)

        logger.info("Conservation analysis: %d areas, %d species simulated, "
                    "%d corridors", len(areas), len(viability), len(corridors))
        return ConservationAnalysis(
            spatial=SpatialAnalysis(density=density, areas=areas,
                                    corridors=corridors),
            viability=viability,
            priority_ranking=ranking,
            actions=conservation_actions(viability),
        )
