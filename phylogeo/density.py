"""Density analysis of occurrence points.

For every point, count the other points (any species) within a fixed
radius, bucket that count into a DensityCategory, and group points into
clusters: the connected components of the graph whose edges join points
no more than `radius_km` apart.

Clustering is an undirected-graph traversal (scipy.sparse.csgraph), so
the result does not depend on the order points are supplied in. Points
with no neighbour are isolated and belong to no cluster.

Complexity is O(N²) in time and memory via a dense distance matrix; for
very large inputs swap `pairwise_distance_km` for a spatial index that
produces the same sparse adjacency.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from phylogeo.config import DensitySection
from phylogeo.spatial import centroid, pairwise_distance_km
from phylogeo.types import (
    DENSITY_RANK,
    DensityCategory,
    DensityCluster,
    OccurrencePoint,
    PointDensity,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# RESULT
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DensityAnalysis:
    """Output of the density stage.

    `densities` is aligned index-for-index with `points`.
    """
    points: Tuple[OccurrencePoint, ...]
    densities: Tuple[PointDensity, ...]
    clusters: Tuple[DensityCluster, ...]
    isolated_point_ids: Tuple[str, ...]
    radius_km: float
    category_counts: Dict[DensityCategory, int] = field(default_factory=dict)
    species_distribution: Dict[str, Dict[DensityCategory, int]] = field(
        default_factory=dict
    )

    @property
    def total_points(self) -> int:
        return len(self.points)

    def density_of(self, point_id: str) -> PointDensity:
        for d in self.densities:
            if d.point_id == point_id:
                return d
        raise KeyError(f"No density record for point '{point_id}'")

    def cluster_of(self, point_id: str) -> Optional[DensityCluster]:
        for cluster in self.clusters:
            if point_id in cluster.member_point_ids:
                return cluster
        return None


# ═══════════════════════════════════════════════════════════════════════
# CATEGORISATION
# ═══════════════════════════════════════════════════════════════════════

def categorize_density(
    nearby_count: int,
    section: Optional[DensitySection] = None,
) -> DensityCategory:
    """Map a neighbour count to its DensityCategory.

    >>> categorize_density(50)
    <DensityCategory.VERY_HIGH: 'very_high'>
    >>> categorize_density(0)
    <DensityCategory.ISOLATED: 'isolated'>
    """
    if nearby_count < 0:
        raise ValueError(f"nearby_count must be >= 0, got {nearby_count}")
    s = section or DensitySection()
    if nearby_count >= s.very_high_threshold:
        return DensityCategory.VERY_HIGH
    if nearby_count >= s.high_threshold:
        return DensityCategory.HIGH
    if nearby_count >= s.medium_threshold:
        return DensityCategory.MEDIUM
    if nearby_count >= s.low_threshold:
        return DensityCategory.LOW
    if nearby_count >= 1:
        return DensityCategory.VERY_LOW
    return DensityCategory.ISOLATED


def majority_density_level(
    categories: Sequence[DensityCategory],
) -> DensityCategory:
    """Most common category; ties go to the denser category."""
    if not categories:
        raise ValueError("majority_density_level() needs at least one category")
    counts = Counter(categories)
    return max(counts, key=lambda c: (counts[c], DENSITY_RANK[c]))


# ═══════════════════════════════════════════════════════════════════════
# NEIGHBOUR COUNTS & CLUSTERS
# ═══════════════════════════════════════════════════════════════════════

def adjacency_matrix(
    points: Sequence[OccurrencePoint],
    radius_km: float,
) -> np.ndarray:
    """(N, N) bool matrix: True where two distinct points are ≤ radius apart."""
    if radius_km <= 0:
        raise ValueError(f"radius_km must be positive, got {radius_km}")
    n = len(points)
    if n == 0:
        return np.zeros((0, 0), dtype=bool)
    lats = np.array([p.coordinates.lat for p in points], dtype=np.float64)
    lngs = np.array([p.coordinates.lng for p in points], dtype=np.float64)
    adj = pairwise_distance_km(lats, lngs) <= radius_km
    np.fill_diagonal(adj, False)
    return adj


def nearby_counts(
    points: Sequence[OccurrencePoint],
    radius_km: float,
) -> np.ndarray:
    """Number of OTHER points within radius, per point."""
    return adjacency_matrix(points, radius_km).sum(axis=1).astype(np.int64)


def _component_groups(adj: np.ndarray) -> List[List[int]]:
    """Connected components of size ≥ 2, ordered by smallest member index."""
    if adj.shape[0] == 0:
        return []
    n_comp, labels = connected_components(csr_matrix(adj), directed=False)
    groups: Dict[int, List[int]] = {}
    for idx, label in enumerate(labels):
        groups.setdefault(int(label), []).append(idx)
    multi = [members for members in groups.values() if len(members) >= 2]
    multi.sort(key=lambda members: members[0])
    logger.debug("%d components, %d with two or more points", n_comp, len(multi))
    return multi


def analyze_density(
    points: Sequence[OccurrencePoint],
    section: Optional[DensitySection] = None,
) -> DensityAnalysis:
    """Run the full density stage over `points`.

    Args:
        points: Occurrence records (any species mix). Not modified.
        section: Density configuration; defaults to a 25 km radius.

    Returns:
        DensityAnalysis with per-point densities, clusters and summaries.

    Raises:
        ValueError: If the configured radius is not positive, or if two
            points share an id.
    """
    s = section or DensitySection()
    pts = tuple(points)
    seen: Dict[str, int] = {}
    for p in pts:
        seen[p.id] = seen.get(p.id, 0) + 1
    duplicates = sorted(pid for pid, n in seen.items() if n > 1)
    if duplicates:
        raise ValueError(f"Duplicate occurrence point ids: {duplicates}")
    adj = adjacency_matrix(pts, s.radius_km)
    counts = adj.sum(axis=1).astype(np.int64) if len(pts) else np.zeros(0, np.int64)

    densities = tuple(
        PointDensity(
            point_id=p.id,
            nearby_points_count=int(counts[i]),
            density_category=categorize_density(int(counts[i]), s),
        )
        for i, p in enumerate(pts)
    )

    clusters: List[DensityCluster] = []
    clustered = np.zeros(len(pts), dtype=bool)
    for members in _component_groups(adj):
        clustered[members] = True
        member_points = [pts[i] for i in members]
        clusters.append(DensityCluster(
            id=f"density_cluster_{len(clusters) + 1}",
            centroid=centroid([p.coordinates for p in member_points]),
            member_point_ids=frozenset(p.id for p in member_points),
            avg_density=float(np.mean(counts[members])),
            density_level=majority_density_level(
                [densities[i].density_category for i in members]
            ),
            species=frozenset(p.species for p in member_points),
        ))

    isolated = tuple(pts[i].id for i in range(len(pts)) if not clustered[i])

    category_counts = {c: 0 for c in DensityCategory}
    species_distribution: Dict[str, Dict[DensityCategory, int]] = {}
    for p, d in zip(pts, densities):
        category_counts[d.density_category] += 1
        per_species = species_distribution.setdefault(
            p.species, {c: 0 for c in DensityCategory}
        )
        per_species[d.density_category] += 1

    logger.info(
        "Density analysis: %d points, %d clusters, %d isolated (radius %.1f km)",
        len(pts), len(clusters), len(isolated), s.radius_km,
    )

    return DensityAnalysis(
        points=pts,
        densities=densities,
        clusters=tuple(clusters),
        isolated_point_ids=isolated,
        radius_km=s.radius_km,
        category_counts=category_counts,
        species_distribution=species_distribution,
    )
