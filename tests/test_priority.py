"""Tests for phylogeo.priority — scoring, ranking, corridors and actions."""

import pytest

from phylogeo.config import PrioritySection
from phylogeo.priority import (
    assign_priority,
    clamp01,
    compute_urgency,
    conservation_actions,
    habitat_quality,
    rank_priorities,
    recommend_corridors,
    spatial_conservation_priority,
)
from phylogeo.spatial import coordinate_distance_km
from phylogeo.types import (
    ActionPriority,
    AreaType,
    Bounds,
    ConservationArea,
    Coordinates,
    DataQuality,
    DensityCategory,
    HabitatProfile,
    Priority,
    RecommendedAction,
    TemporalCoverage,
    ViabilityResult,
)


def _area(aid, lat=0.0, lng=100.0, species="Pongo abelii", pop=100,
          gd=0.5, threat=0.0, risk=0.5, habitat=HabitatProfile()):
    return ConservationArea(
        id=aid, name=aid, type=AreaType.DENSITY_CLUSTER,
        center=Coordinates(lat, lng),
        bounds=Bounds(lat + 0.1, lat - 0.1, lng + 0.1, lng - 0.1),
        species=(species,), dominant_species=species,
        population_size=pop, area=1000.0, extinction_risk=risk,
        genetic_diversity=gd, threat_level=threat,
        priority=Priority.MEDIUM, urgency=0.0, total_occurrences=3,
        temporal_coverage=TemporalCoverage(), data_quality=DataQuality.FAIR,
        density_level=DensityCategory.LOW, habitat=habitat,
    )


def _viability(species, p_ext, actions=()):
    return ViabilityResult(species=species, extinction_probability=p_ext,
                           mean_trajectory=(), recommended_actions=tuple(actions))


# ═══════════════════════════════════════════════════════════════════════
# SCORING
# ═══════════════════════════════════════════════════════════════════════

class TestScoring:
    def test_clamp(self):
        assert clamp01(None) == 0.0
        assert clamp01(-0.3) == 0.0
        assert clamp01(1.7) == 1.0
        assert clamp01(0.25) == 0.25

    def test_habitat_quality(self):
        profile = HabitatProfile(forest_cover=0.8, fragmentation=0.25,
                                 human_disturbance=0.5)
        assert habitat_quality(profile) == pytest.approx(0.8 * 0.75 * 0.5)

    def test_unknown_habitat_is_zero(self):
        assert habitat_quality(HabitatProfile()) == 0.0

    def test_habitat_inputs_clamped(self):
        assert habitat_quality(HabitatProfile(1.5, -0.2, 0.0)) == 1.0

    def test_spatial_priority(self):
        # 0.4·(1 − 0.25) + 0.3·0.6 + 0.3·0.2
        assert spatial_conservation_priority(250, 0.6, 0.2) == pytest.approx(0.54)
        assert spatial_conservation_priority(5000, 0.0, 0.0) == 0.0

    def test_urgency_formula(self):
        assert compute_urgency(0.5, 0.5, 0.5) == pytest.approx(0.2 + 0.2 + 0.1)

    def test_urgency_clamped(self):
        assert 0.0 <= compute_urgency(2.0, 1.0, 0.0) <= 1.0

    @pytest.mark.parametrize("risk,pop,expected", [
        (0.71, 1000, Priority.CRITICAL),
        (0.1, 10, Priority.CRITICAL),
        (0.7, 1000, Priority.HIGH),
        (0.41, 1000, Priority.HIGH),
        (0.4, 1000, Priority.MEDIUM),
        (0.21, 1000, Priority.MEDIUM),
        (0.2, 1000, Priority.LOW),
    ])
    def test_assign_priority(self, risk, pop, expected):
        assert assign_priority(risk, pop, critical_population=50) is expected


# ═══════════════════════════════════════════════════════════════════════
# RANKING
# ═══════════════════════════════════════════════════════════════════════

class TestRankPriorities:
    def test_sorted_by_urgency(self):
        areas = [_area("a", pop=900), _area("b", pop=10), _area("c", pop=500)]
        ranking = rank_priorities(areas, {})
        assert [r.area_id for r in ranking] == ["b", "c", "a"]
        urg = [r.urgency for r in ranking]
        assert urg == sorted(urg, reverse=True)
        assert all(0.0 <= u <= 1.0 for u in urg)

    def test_ties_broken_by_id_under_permutation(self):
        areas = [_area("area_2"), _area("area_10"), _area("area_1")]
        first = [r.area_id for r in rank_priorities(areas, {})]
        second = [r.area_id for r in rank_priorities(areas[::-1], {})]
        assert first == second == ["area_1", "area_10", "area_2"]

    def test_viability_overrides_spatial_risk(self):
        area = _area("a", risk=0.1, pop=1000)
        record = rank_priorities([area], {"Pongo abelii": _viability("Pongo abelii", 0.9)})[0]
        assert record.extinction_risk == 0.9
        assert record.priority is Priority.CRITICAL
        assert record.area is area

    def test_unmatched_area_keeps_spatial_risk(self):
        area = _area("a", risk=0.3, pop=1000)
        record = rank_priorities([area], {"Other": _viability("Other", 0.9)})[0]
        assert record.extinction_risk == 0.3
        assert record.priority is Priority.MEDIUM

    def test_critical_floor(self):
        area = _area("a", species="Pongo tapanuliensis", risk=0.1, pop=80)
        plain = rank_priorities([area], {})[0]
        floored = rank_priorities([area], {}, {"Pongo tapanuliensis": 100})[0]
        assert plain.priority is Priority.LOW
        assert floored.priority is Priority.CRITICAL

    def test_urgency_uses_habitat(self):
        good = _area("good", habitat=HabitatProfile(1.0, 0.0, 0.0))
        poor = _area("poor")
        ranking = rank_priorities([good, poor], {})
        assert ranking[0].area_id == "poor"
        assert ranking[1].habitat_quality == 1.0
        assert ranking[0].urgency - ranking[1].urgency == pytest.approx(0.2)

    def test_empty(self):
        assert rank_priorities([], {}) == ()


# ═══════════════════════════════════════════════════════════════════════
# CORRIDORS
# ═══════════════════════════════════════════════════════════════════════

class TestCorridors:
    def test_close_pairs_only(self):
        areas = [_area("a", 0.0, 100.0), _area("b", 0.2, 100.0),
                 _area("c", 5.0, 110.0)]
        corridors = recommend_corridors(rank_priorities(areas, {}))
        assert len(corridors) == 1
        c = corridors[0]
        assert {c.from_area, c.to_area} == {"a", "b"}
        assert c.distance_km < 50.0

    def test_distance_symmetric(self):
        a, b = Coordinates(1.0, 100.0), Coordinates(1.3, 100.2)
        assert coordinate_distance_km(a, b) == pytest.approx(coordinate_distance_km(b, a))

    def test_priority_is_mean_of_pair(self):
        areas = [_area("a", pop=0, gd=1.0, threat=1.0), _area("b", 0.1, 100.0, pop=1000)]
        ranking = rank_priorities(areas, {})
        corridor = recommend_corridors(ranking)[0]
        assert corridor.priority == pytest.approx((1.0 + 0.15) / 2)

    def test_sorted_by_priority(self):
        areas = [_area(f"a{i}", 0.01 * i, 100.0, pop=100 * i) for i in range(4)]
        corridors = recommend_corridors(rank_priorities(areas, {}))
        prios = [c.priority for c in corridors]
        assert prios == sorted(prios, reverse=True)
        assert len(corridors) == 6

    def test_top_n_limit(self):
        areas = [_area(f"a{i}", 0.01 * i, 100.0) for i in range(5)]
        ranking = rank_priorities(areas, {})
        corridors = recommend_corridors(ranking, PrioritySection(top_n=2))
        assert len(corridors) == 1
        assert (corridors[0].from_area, corridors[0].to_area) == ("a0", "a1")

    def test_distant_pair_excluded(self):
        # ~55.6 km apart
        areas = [_area("a", 0.0, 100.0), _area("b", 0.5, 100.0)]
        assert recommend_corridors(rank_priorities(areas, {})) == ()


# ═══════════════════════════════════════════════════════════════════════
# ACTIONS
# ═══════════════════════════════════════════════════════════════════════

class TestConservationActions:
    def test_flatten_and_order(self):
        ongoing = RecommendedAction(ActionPriority.ONGOING, "Monitor", "r")
        critical = RecommendedAction(ActionPriority.CRITICAL, "Breed", "r")
        medium = RecommendedAction(ActionPriority.MEDIUM, "Corridors", "r")
        viability = {
            "Pongo pygmaeus": _viability("Pongo pygmaeus", 0.3, [medium, ongoing]),
            "Pongo abelii": _viability("Pongo abelii", 0.6, [critical, ongoing]),
        }
        actions = conservation_actions(viability)
        assert [(a.species, a.priority) for a in actions] == [
            ("Pongo abelii", ActionPriority.CRITICAL),
            ("Pongo pygmaeus", ActionPriority.MEDIUM),
            ("Pongo abelii", ActionPriority.ONGOING),
            ("Pongo pygmaeus", ActionPriority.ONGOING),
        ]
        assert actions[0].timeline == "Immediate (0-6 months)"
        assert actions[-1].timeline == "Long-term (ongoing)"

    def test_empty(self):
        assert conservation_actions({}) == ()
