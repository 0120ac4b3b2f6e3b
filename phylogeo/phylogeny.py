"""Phylogenetic distances, tree construction and bootstrap support.

Distances use the Jukes–Cantor correction of the p-distance measured
over the shorter of the two sequences:

  d = −¾ · ln(1 − 4p/3)   for p < 0.75
  d = 1.0                 otherwise (saturated; never NaN/inf)

Two tree builders are available:
  - species_grouping (default): root → one subtree per species, leaves
    are samples; a hierarchical grouping rather than an inferred tree.
  - neighbor_joining: Saitou & Nei (1987) NJ over the distance matrix.

Bootstrap support resamples alignment columns with replacement and scores
how often each sample keeps its full-data nearest neighbour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from phylogeo.config import EngineConfig, default_config
from phylogeo.rng import create_rng_hierarchy
from phylogeo.types import GenomicSample

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# DISTANCES
# ═══════════════════════════════════════════════════════════════════════

SATURATED_DISTANCE = 1.0


def jukes_cantor_distance(a: str, b: str) -> float:
    """Jukes–Cantor corrected distance between two sequences.

    >>> jukes_cantor_distance("ACGT", "ACGT")
    0.0
    >>> jukes_cantor_distance("AAAA", "TTTT")
    1.0
    """
    if not a and not b:
        return 0.0
    n = min(len(a), len(b))
    if n == 0:
        return SATURATED_DISTANCE
    diffs = sum(1 for x, y in zip(a[:n].upper(), b[:n].upper()) if x != y)
    p = diffs / n
    if p >= 0.75:
        return SATURATED_DISTANCE
    return float(-0.75 * np.log(1.0 - 4.0 * p / 3.0))


def distance_matrix(sequences: Sequence[str]) -> np.ndarray:
    """Symmetric (N, N) Jukes–Cantor matrix with a zero diagonal."""
    n = len(sequences)
    mat = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            mat[i, j] = mat[j, i] = jukes_cantor_distance(sequences[i], sequences[j])
    return mat


# ═══════════════════════════════════════════════════════════════════════
# TREES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TreeNode:
    name: str
    branch_length: float = 0.0
    children: Tuple["TreeNode", ...] = ()
    species: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def leaves(self) -> List[str]:
        if self.is_leaf:
            return [self.name]
        out: List[str] = []
        for child in self.children:
            out.extend(child.leaves())
        return out

    def to_newick(self) -> str:
        """Newick string, e.g. ``((a:0.1,b:0.2)Pongo_abelii:0.05)root;``."""
        return self._newick() + ';'

    def _newick(self) -> str:
        label = self.name.replace(' ', '_')
        inner = ''
        if self.children:
            inner = '(' + ','.join(c._newick() for c in self.children) + ')'
        return f"{inner}{label}:{self.branch_length:.6g}"


def build_species_tree(
    samples: Sequence[GenomicSample],
    matrix: np.ndarray,
) -> TreeNode:
    """Group samples into per-species subtrees under a single root.

    Species subtrees appear in order of first appearance with branch
    length 0.05·(index + 1). A leaf's branch length is its mean distance
    to the other samples of its species (0 for a lone sample).
    """
    order: Dict[str, List[int]] = {}
    for idx, sample in enumerate(samples):
        order.setdefault(sample.species, []).append(idx)

    subtrees = []
    for index, (species, members) in enumerate(order.items()):
        leaves = []
        for i in members:
            others = [j for j in members if j != i]
            length = float(np.mean(matrix[i, others])) if others else 0.0
            leaves.append(TreeNode(name=samples[i].id, branch_length=length,
                                   species=species))
        subtrees.append(TreeNode(name=species, branch_length=0.05 * (index + 1),
                                 children=tuple(leaves), species=species))
    return TreeNode(name='root', children=tuple(subtrees))


def neighbor_joining(labels: Sequence[str], matrix: np.ndarray) -> TreeNode:
    """Unrooted Saitou–Nei neighbour joining, returned with a root node.

    Negative branch lengths are clamped to 0. Ties in the Q matrix go to
    the lowest (i, j) pair.

    Raises:
        ValueError: If the matrix is not square or does not match labels.
    """
    d = np.asarray(matrix, dtype=np.float64)
    n = len(labels)
    if d.shape != (n, n):
        raise ValueError(f"matrix shape {d.shape} does not match {n} labels")
    if n == 0:
        raise ValueError("neighbor_joining() needs at least one label")

    nodes: List[TreeNode] = [TreeNode(name=str(lab)) for lab in labels]
    if n == 1:
        return TreeNode(name='root', children=(nodes[0],))

    internal = 0
    while len(nodes) > 2:
        m = len(nodes)
        r = d.sum(axis=1)
        q = (m - 2) * d - r[:, None] - r[None, :]
        np.fill_diagonal(q, np.inf)
        i, j = divmod(int(np.argmin(q)), m)
        if i > j:
            i, j = j, i
        li = 0.5 * d[i, j] + (r[i] - r[j]) / (2.0 * (m - 2))
        lj = d[i, j] - li
        internal += 1
        joined = TreeNode(
            name=f"node_{internal}",
            children=(
                _with_length(nodes[i], max(li, 0.0)),
                _with_length(nodes[j], max(lj, 0.0)),
            ),
        )
        new_row = 0.5 * (d[i] + d[j] - d[i, j])
        keep = [k for k in range(m) if k not in (i, j)]
        d = np.vstack([
            np.hstack([d[np.ix_(keep, keep)], new_row[keep][:, None]]),
            np.append(new_row[keep], 0.0)[None, :],
        ])
        nodes = [nodes[k] for k in keep] + [joined]

    half = max(float(d[0, 1]) / 2.0, 0.0)
    return TreeNode(name='root', children=(
        _with_length(nodes[0], half),
        _with_length(nodes[1], half),
    ))


def _with_length(node: TreeNode, length: float) -> TreeNode:
    return TreeNode(name=node.name, branch_length=float(length),
                    children=node.children, species=node.species)


# ═══════════════════════════════════════════════════════════════════════
# BOOTSTRAP
# ═══════════════════════════════════════════════════════════════════════

def _nearest_neighbours(matrix: np.ndarray) -> np.ndarray:
    masked = matrix.copy()
    np.fill_diagonal(masked, np.inf)
    return np.argmin(masked, axis=1)


def bootstrap_support(
    samples: Sequence[GenomicSample],
    rng: np.random.Generator,
    n_replicates: int = 10,
) -> Tuple[float, ...]:
    """Column-resampling bootstrap scores in [0, 100].

    Sequences are truncated to the shortest length. Each replicate draws
    that many columns with replacement, rebuilds the distance matrix and
    scores the percentage of samples whose nearest neighbour matches the
    full-data nearest neighbour.

    Returns:
        One score per replicate; empty with fewer than two samples or an
        empty alignment.
    """
    if n_replicates < 0:
        raise ValueError(f"n_replicates must be >= 0, got {n_replicates}")
    if len(samples) < 2:
        return ()
    length = min(len(s.sequence) for s in samples)
    if length == 0:
        return ()

    alignment = np.array([list(s.sequence[:length].upper()) for s in samples])
    reference = _nearest_neighbours(
        distance_matrix([''.join(row) for row in alignment])
    )
    scores = []
    for _ in range(n_replicates):
        cols = rng.integers(0, length, size=length)
        resampled = [''.join(row) for row in alignment[:, cols]]
        nn = _nearest_neighbours(distance_matrix(resampled))
        scores.append(float(100.0 * np.mean(nn == reference)))
    return tuple(scores)


# ═══════════════════════════════════════════════════════════════════════
# ANALYSIS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class PhylogeneticAnalysis:
    distance_matrix: np.ndarray
    labels: Tuple[str, ...]
    tree: TreeNode
    bootstrap_values: Tuple[float, ...]
    sample_count: int
    method: str
    fallback: bool = False
    error: Optional[str] = None
    species: Tuple[str, ...] = field(default_factory=tuple)


def fallback_analysis(
    samples: Sequence[GenomicSample],
    config: EngineConfig,
    error: str,
) -> PhylogeneticAnalysis:
    """Empty-tree result used when construction is impossible or fails."""
    p = config.phylogeny
    return PhylogeneticAnalysis(
        distance_matrix=np.zeros((0, 0), dtype=np.float64),
        labels=(),
        tree=TreeNode(name='root'),
        bootstrap_values=(p.fallback_bootstrap_value,) * p.max_bootstrap,
        sample_count=len(samples),
        method=p.tree_method,
        fallback=True,
        error=error,
    )


def build_phylogeny(
    samples: Sequence[GenomicSample],
    config: Optional[EngineConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> PhylogeneticAnalysis:
    """Distance matrix, tree and bootstrap support for `samples`.

    Never raises: empty input or any failure during construction yields
    the logged fallback result.

    Args:
        samples: Genomic samples, in the order labels should follow.
        config: Engine configuration (tree method, bootstrap counts).
        rng: Generator for bootstrap resampling. Defaults to the
            'bootstrap' stream of the configured seed.
    """
    cfg = config or default_config()
    p = cfg.phylogeny
    if not samples:
        logger.warning("No genomic samples; returning fallback phylogeny")
        return fallback_analysis(samples, cfg, "No genomic samples available")

    if rng is None:
        rng = create_rng_hierarchy(cfg.analysis.seed)['bootstrap']

    try:
        matrix = distance_matrix([s.sequence for s in samples])
        labels = tuple(s.id for s in samples)
        if p.tree_method == "neighbor_joining":
            tree = neighbor_joining(labels, matrix)
        else:
            tree = build_species_tree(samples, matrix)
        support = bootstrap_support(samples, rng,
                                    min(p.n_bootstrap, p.max_bootstrap))
    except Exception as exc:
        logger.warning("Phylogeny construction failed (%s); using fallback", exc)
        return fallback_analysis(samples, cfg, str(exc))

    logger.info("Phylogeny: %d samples, method=%s, %d bootstrap replicates",
                len(samples), p.tree_method, len(support))
    return PhylogeneticAnalysis(
        distance_matrix=matrix,
        labels=labels,
        tree=tree,
        bootstrap_values=support,
        sample_count=len(samples),
        method=p.tree_method,
        species=tuple(dict.fromkeys(s.species for s in samples)),
    )
