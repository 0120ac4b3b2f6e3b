"""Tests for phylogeo.phylogeny — JC distances, trees and bootstrap support."""

import math

import numpy as np
import pytest

import phylogeo.phylogeny as phylogeny
from phylogeo.config import default_config
from phylogeo.phylogeny import (
    TreeNode,
    bootstrap_support,
    build_phylogeny,
    build_species_tree,
    distance_matrix,
    jukes_cantor_distance,
    neighbor_joining,
)
from phylogeo.types import GenomicSample


def _sample(sid, seq, species="Pongo abelii"):
    return GenomicSample(id=sid, species=species, sequence=seq)


def _leaf_lengths(node):
    if node.is_leaf:
        return {node.name: node.branch_length}
    out = {}
    for child in node.children:
        out.update(_leaf_lengths(child))
    return out


def _total_length(node):
    return node.branch_length + sum(_total_length(c) for c in node.children)


# ═══════════════════════════════════════════════════════════════════════
# JUKES–CANTOR
# ═══════════════════════════════════════════════════════════════════════

class TestJukesCantor:
    def test_identical_zero(self):
        assert jukes_cantor_distance("ACGTACGT", "ACGTACGT") == 0.0

    def test_all_mismatch_saturates(self):
        d = jukes_cantor_distance("AAAA", "TTTT")
        assert d == 1.0
        assert not math.isnan(d)

    def test_three_quarters_saturates(self):
        assert jukes_cantor_distance("AAAA", "ATTT") == 1.0

    def test_quarter_mismatch(self):
        expected = -0.75 * math.log(1 - 4 * 0.25 / 3)
        assert jukes_cantor_distance("AAAA", "AAAT") == pytest.approx(expected)

    def test_case_insensitive(self):
        assert jukes_cantor_distance("acgt", "ACGT") == 0.0

    def test_shorter_length_used(self):
        assert jukes_cantor_distance("ACGTTTTT", "ACG") == 0.0

    def test_empty_sequences(self):
        assert jukes_cantor_distance("", "") == 0.0
        assert jukes_cantor_distance("", "ACGT") == 1.0
        assert jukes_cantor_distance("ACGT", "") == 1.0

    def test_symmetric(self):
        assert (jukes_cantor_distance("ACGTAC", "ACCTAG")
                == jukes_cantor_distance("ACCTAG", "ACGTAC"))


class TestDistanceMatrix:
    def test_shape_symmetry_diagonal(self):
        mat = distance_matrix(["ACGT", "ACGA", "TTTT", "ACGT"])
        assert mat.shape == (4, 4)
        np.testing.assert_array_equal(mat, mat.T)
        np.testing.assert_array_equal(np.diag(mat), np.zeros(4))
        assert mat[0, 3] == 0.0
        assert np.all(np.isfinite(mat))

    def test_empty(self):
        assert distance_matrix([]).shape == (0, 0)


# ═══════════════════════════════════════════════════════════════════════
# TREES
# ═══════════════════════════════════════════════════════════════════════

class TestSpeciesTree:
    def test_grouping_and_branch_lengths(self):
        samples = [
            _sample("a1", "AAAA"),
            _sample("p1", "TTTT", "Pongo pygmaeus"),
            _sample("a2", "AAAT"),
        ]
        mat = distance_matrix([s.sequence for s in samples])
        tree = build_species_tree(samples, mat)
        assert tree.name == "root"
        assert [c.name for c in tree.children] == ["Pongo abelii", "Pongo pygmaeus"]
        assert tree.children[0].branch_length == pytest.approx(0.05)
        assert tree.children[1].branch_length == pytest.approx(0.10)
        assert [leaf.name for leaf in tree.children[0].children] == ["a1", "a2"]
        assert tree.children[0].children[0].branch_length == pytest.approx(mat[0, 2])
        # Lone sample has no conspecifics
        assert tree.children[1].children[0].branch_length == 0.0

    def test_leaves_and_newick(self):
        samples = [_sample("a1", "AAAA"), _sample("a2", "AAAA")]
        tree = build_species_tree(samples, distance_matrix(["AAAA", "AAAA"]))
        assert tree.leaves() == ["a1", "a2"]
        assert tree.to_newick() == "((a1:0,a2:0)Pongo_abelii:0.05)root:0;"


class TestNeighborJoining:
    # Saitou & Nei worked example: an additive tree is recovered exactly
    LABELS = ["a", "b", "c", "d", "e"]
    MATRIX = np.array([
        [0, 5, 9, 9, 8],
        [5, 0, 10, 10, 9],
        [9, 10, 0, 8, 7],
        [9, 10, 8, 0, 3],
        [8, 9, 7, 3, 0],
    ], dtype=float)

    def test_recovers_additive_tree(self):
        tree = neighbor_joining(self.LABELS, self.MATRIX)
        lengths = _leaf_lengths(tree)
        assert sorted(lengths) == self.LABELS
        assert lengths["a"] == pytest.approx(2.0)
        assert lengths["b"] == pytest.approx(3.0)
        assert lengths["c"] == pytest.approx(4.0)
        assert lengths["d"] == pytest.approx(2.0)
        assert lengths["e"] == pytest.approx(1.0)
        assert _total_length(tree) == pytest.approx(17.0)

    def test_two_taxa(self):
        tree = neighbor_joining(["x", "y"], np.array([[0.0, 0.4], [0.4, 0.0]]))
        assert _leaf_lengths(tree) == pytest.approx({"x": 0.2, "y": 0.2})

    def test_single_taxon(self):
        tree = neighbor_joining(["x"], np.zeros((1, 1)))
        assert tree.leaves() == ["x"]

    def test_branch_lengths_non_negative(self):
        rng = np.random.default_rng(1)
        m = rng.uniform(0, 1, (6, 6))
        m = (m + m.T) / 2
        np.fill_diagonal(m, 0)
        tree = neighbor_joining(list("uvwxyz"), m)

        def walk(node):
            assert node.branch_length >= 0.0
            for child in node.children:
                walk(child)
        walk(tree)
        assert sorted(tree.leaves()) == list("uvwxyz")

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError, match="shape"):
            neighbor_joining(["a", "b", "c"], np.zeros((2, 2)))


# ═══════════════════════════════════════════════════════════════════════
# BOOTSTRAP
# ═══════════════════════════════════════════════════════════════════════

def _two_clades():
    return [
        _sample("s1", "AAAAAAAAAA"),
        _sample("s2", "AAAAAAAAAT"),
        _sample("s3", "CCCCCCCCCC", "Pongo pygmaeus"),
        _sample("s4", "CCCCCCCCCG", "Pongo pygmaeus"),
    ]


class TestBootstrap:
    def test_count_and_range(self):
        scores = bootstrap_support(_two_clades(), np.random.default_rng(0), 7)
        assert len(scores) == 7
        assert all(0.0 <= s <= 100.0 for s in scores)

    def test_clear_structure_fully_supported(self):
        scores = bootstrap_support(_two_clades(), np.random.default_rng(0), 10)
        assert scores == (100.0,) * 10

    def test_reproducible(self):
        samples = [_sample(f"s{i}", seq) for i, seq in
                   enumerate(["ACGTACGTAC", "ACGTTCGTAC", "TCGTACGAAC", "ACCTACGTAG"])]
        s1 = bootstrap_support(samples, np.random.default_rng(5), 10)
        s2 = bootstrap_support(samples, np.random.default_rng(5), 10)
        assert s1 == s2

    def test_too_few_samples(self):
        assert bootstrap_support([_sample("s1", "ACGT")], np.random.default_rng(0), 10) == ()

    def test_empty_alignment(self):
        samples = [_sample("s1", ""), _sample("s2", "ACGT")]
        assert bootstrap_support(samples, np.random.default_rng(0), 10) == ()


# ═══════════════════════════════════════════════════════════════════════
# ANALYSIS & FALLBACK
# ═══════════════════════════════════════════════════════════════════════

class TestBuildPhylogeny:
    def test_normal_result(self):
        result = build_phylogeny(_two_clades(), default_config(),
                                 np.random.default_rng(0))
        assert not result.fallback
        assert result.error is None
        assert result.sample_count == 4
        assert result.labels == ("s1", "s2", "s3", "s4")
        assert result.distance_matrix.shape == (4, 4)
        assert result.method == "species_grouping"
        assert len(result.bootstrap_values) == 10
        assert result.species == ("Pongo abelii", "Pongo pygmaeus")

    def test_bootstrap_capped(self):
        config = default_config()
        config.phylogeny.n_bootstrap = 50
        result = build_phylogeny(_two_clades(), config, np.random.default_rng(0))
        assert len(result.bootstrap_values) == config.phylogeny.max_bootstrap

    def test_neighbor_joining_method(self):
        config = default_config()
        config.phylogeny.tree_method = "neighbor_joining"
        result = build_phylogeny(_two_clades(), config)
        assert result.method == "neighbor_joining"
        assert sorted(result.tree.leaves()) == ["s1", "s2", "s3", "s4"]

    def test_default_rng_is_deterministic(self):
        r1 = build_phylogeny(_two_clades())
        r2 = build_phylogeny(_two_clades())
        assert r1.bootstrap_values == r2.bootstrap_values

    def test_empty_input_fallback(self):
        result = build_phylogeny([])
        assert result.fallback
        assert result.tree == TreeNode(name="root")
        assert result.distance_matrix.shape == (0, 0)
        assert result.bootstrap_values == (75.0,) * 10
        assert result.sample_count == 0
        assert result.error

    def test_construction_failure_fallback(self, monkeypatch, caplog):
        def broken(*args, **kwargs):
            raise RuntimeError("malformed alignment")
        monkeypatch.setattr(phylogeny, "build_species_tree", broken)

        with caplog.at_level("WARNING", logger="phylogeo.phylogeny"):
            result = build_phylogeny(_two_clades())
        assert result.fallback
        assert result.error == "malformed alignment"
        assert result.sample_count == 4
        assert result.bootstrap_values == (75.0,) * 10
        assert "malformed alignment" in caplog.text
