"""Genetic diversity indices and per-species diversity profiles.

Indices over a vector of non-negative frequencies f (normalised to p):
  Shannon H = −Σ p·ln p   (terms with p = 0 omitted)
  Simpson D = 1 − Σ p²

Both are 0 for an empty vector or a zero total. Per-species profiles
compute these over the samples' genetic-diversity values and add the
nucleotide composition, nucleotide diversity π (mean pairwise
p-distance), the number of polymorphic sites and a simplified codon-level
dN/dS selection estimate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import entropy

from phylogeo.config import EngineConfig, default_config
from phylogeo.types import NUCLEOTIDES, GenomicSample, SampleQuality

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# INDICES
# ═══════════════════════════════════════════════════════════════════════

def _proportions(frequencies: Sequence[float]) -> Optional[np.ndarray]:
    f = np.asarray(frequencies, dtype=np.float64)
    if f.size == 0:
        return None
    if np.any(f < 0):
        raise ValueError("frequencies must be non-negative")
    total = f.sum()
    if total <= 0:
        return None
    return f / total


def shannon_index(frequencies: Sequence[float]) -> float:
    """Shannon entropy (natural log) of a frequency vector.

    >>> round(shannon_index([1, 1, 1, 1]), 6)  # ln 4
    1.386294
    """
    p = _proportions(frequencies)
    if p is None:
        return 0.0
    return float(entropy(p))


def simpson_index(frequencies: Sequence[float]) -> float:
    """Gini–Simpson diversity 1 − Σ p²."""
    p = _proportions(frequencies)
    if p is None:
        return 0.0
    return float(1.0 - np.sum(p ** 2))


# ═══════════════════════════════════════════════════════════════════════
# SEQUENCE STATISTICS
# ═══════════════════════════════════════════════════════════════════════

def nucleotide_frequencies(sequences: Sequence[str]) -> Dict[str, float]:
    """Proportions of A/T/C/G over all sequences (other symbols ignored)."""
    counts = {base: 0 for base in NUCLEOTIDES}
    for seq in sequences:
        upper = seq.upper()
        for base in NUCLEOTIDES:
            counts[base] += upper.count(base)
    total = sum(counts.values())
    if total == 0:
        return {base: 0.0 for base in NUCLEOTIDES}
    return {base: counts[base] / total for base in NUCLEOTIDES}


def p_distance(a: str, b: str) -> float:
    """Proportion of differing sites over the shorter length (0 if empty)."""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    diffs = sum(1 for x, y in zip(a[:n].upper(), b[:n].upper()) if x != y)
    return diffs / n


def nucleotide_diversity(sequences: Sequence[str]) -> float:
    """π: mean pairwise p-distance; 0 with fewer than two sequences."""
    if len(sequences) < 2:
        return 0.0
    return float(np.mean([p_distance(a, b) for a, b in combinations(sequences, 2)]))


def polymorphic_sites(sequences: Sequence[str]) -> int:
    """Columns (over the shortest length) carrying more than one symbol."""
    if len(sequences) < 2:
        return 0
    n = min(len(s) for s in sequences)
    upper = [s[:n].upper() for s in sequences]
    return sum(1 for i in range(n) if len({s[i] for s in upper}) > 1)


@dataclass(frozen=True)
class SelectionAnalysis:
    """Simplified codon-level selection estimate."""
    synonymous: int = 0
    non_synonymous: int = 0
    dn_ds: float = 0.0
    interpretation: str = "Insufficient data"


def selection_analysis(
    sequences: Sequence[str],
    positive_threshold: float = 1.2,
    purifying_threshold: float = 0.8,
) -> SelectionAnalysis:
    """Classify selection from consecutive sequence pairs, codon by codon.

    A codon differing only at its third position counts as synonymous;
    any difference at the first or second position counts as
    non-synonymous. No translation table is consulted.
    """
    if len(sequences) < 2:
        return SelectionAnalysis()
    syn = 0
    non_syn = 0
    for a, b in zip(sequences, sequences[1:]):
        n = min(len(a), len(b)) // 3 * 3
        a, b = a[:n].upper(), b[:n].upper()
        for i in range(0, n, 3):
            ca, cb = a[i:i + 3], b[i:i + 3]
            if ca == cb:
                continue
            if ca[:2] != cb[:2]:
                non_syn += 1
            else:
                syn += 1
    dn_ds = non_syn / syn if syn > 0 else 0.0
    if dn_ds > positive_threshold:
        label = "Positive"
    elif dn_ds < purifying_threshold:
        label = "Purifying"
    else:
        label = "Neutral"
    return SelectionAnalysis(synonymous=syn, non_synonymous=non_syn,
                             dn_ds=dn_ds, interpretation=label)


# ═══════════════════════════════════════════════════════════════════════
# PROFILES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DiversityProfile:
    species: str
    sample_size: int
    shannon_index: float
    simpson_index: float
    nucleotide_frequencies: Dict[str, float]
    average_genetic_diversity: float
    nucleotide_diversity: float
    polymorphic_sites: int
    selection: SelectionAnalysis
    conservation_status: str
    population_trend: str
    data_quality: SampleQuality


@dataclass(frozen=True)
class DiversityRecommendation:
    species: str
    priority: str
    action: str
    reason: str


@dataclass(frozen=True)
class OverallDiversity:
    avg_shannon: float = 0.0
    avg_simpson: float = 0.0
    species_count: int = 0
    most_diverse: Optional[str] = None
    least_diverse: Optional[str] = None


@dataclass(frozen=True)
class DiversityAnalysis:
    by_species: Dict[str, DiversityProfile] = field(default_factory=dict)
    overall: OverallDiversity = field(default_factory=OverallDiversity)
    recommendations: Tuple[DiversityRecommendation, ...] = ()


def sample_quality(sample_size: int, min_reliable: int) -> SampleQuality:
    if sample_size == 0:
        return SampleQuality.INSUFFICIENT
    if sample_size < min_reliable:
        return SampleQuality.LIMITED
    return SampleQuality.SUFFICIENT


def species_profile(
    species: str,
    samples: Sequence[GenomicSample],
    config: Optional[EngineConfig] = None,
) -> DiversityProfile:
    """Diversity profile of one species from its samples (may be empty)."""
    cfg = config or default_config()
    constants = cfg.species_constants(species)
    sequences = [s.sequence for s in samples]
    gd = [s.genetic_diversity for s in samples]
    return DiversityProfile(
        species=species,
        sample_size=len(samples),
        shannon_index=shannon_index(gd),
        simpson_index=simpson_index(gd),
        nucleotide_frequencies=nucleotide_frequencies(sequences),
        average_genetic_diversity=float(np.mean(gd)) if gd else 0.0,
        nucleotide_diversity=nucleotide_diversity(sequences),
        polymorphic_sites=polymorphic_sites(sequences),
        selection=selection_analysis(sequences),
        conservation_status=constants.conservation_status,
        population_trend=constants.population_trend,
        data_quality=sample_quality(len(samples),
                                    cfg.diversity.min_reliable_samples),
    )


def overall_diversity(profiles: Dict[str, DiversityProfile]) -> OverallDiversity:
    if not profiles:
        return OverallDiversity()
    ordered = sorted(profiles.values(), key=lambda p: p.species)
    # max/min keep the first (alphabetical) species on ties
    most = max(ordered, key=lambda p: p.shannon_index)
    least = min(ordered, key=lambda p: p.shannon_index)
    return OverallDiversity(
        avg_shannon=float(np.mean([p.shannon_index for p in ordered])),
        avg_simpson=float(np.mean([p.simpson_index for p in ordered])),
        species_count=len(ordered),
        most_diverse=most.species,
        least_diverse=least.species,
    )


def diversity_recommendations(
    profiles: Dict[str, DiversityProfile],
    config: Optional[EngineConfig] = None,
) -> Tuple[DiversityRecommendation, ...]:
    cfg = config or default_config()
    recs: List[DiversityRecommendation] = []
    for species in sorted(profiles):
        profile = profiles[species]
        if profile.shannon_index < cfg.diversity.low_shannon_threshold:
            recs.append(DiversityRecommendation(
                species=species,
                priority="high",
                action="Genetic rescue program",
                reason="Low genetic diversity detected",
            ))
        if profile.sample_size < cfg.diversity.min_reliable_samples:
            recs.append(DiversityRecommendation(
                species=species,
                priority="medium",
                action="Increase sampling effort",
                reason="Insufficient genetic sampling",
            ))
    return tuple(recs)


def analyze_diversity(
    samples: Sequence[GenomicSample],
    config: Optional[EngineConfig] = None,
    species: Sequence[str] = (),
) -> DiversityAnalysis:
    """Per-species diversity profiles plus an overall summary.

    Args:
        samples: Genomic samples of any species mix.
        config: Engine configuration (species table, sampling threshold).
        species: Extra species to profile even without samples; these get
            a neutral, `insufficient` profile.

    Returns:
        DiversityAnalysis keyed by species name.
    """
    cfg = config or default_config()
    grouped: Dict[str, List[GenomicSample]] = {name: [] for name in species}
    for sample in samples:
        grouped.setdefault(sample.species, []).append(sample)

    profiles = {name: species_profile(name, group, cfg)
                for name, group in sorted(grouped.items())}
    for name, profile in profiles.items():
        if profile.data_quality is not SampleQuality.SUFFICIENT:
            logger.debug("%s: %d samples, diversity data %s",
                         name, profile.sample_size, profile.data_quality.value)
    logger.info("Diversity analysis over %d samples, %d species",
                len(samples), len(profiles))
    return DiversityAnalysis(
        by_species=profiles,
        overall=overall_diversity(profiles),
        recommendations=diversity_recommendations(profiles, cfg),
    )
