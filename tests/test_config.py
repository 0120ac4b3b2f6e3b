"""Tests for phylogeo.config — configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from phylogeo.config import (
    DEFAULT_SPECIES_CONSTANTS,
    AreaSection,
    DensitySection,
    EngineConfig,
    PhylogenySection,
    SpeciesConstants,
    ViabilitySection,
    deep_merge,
    default_config,
    load_config,
    validate_config,
)


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        base = {'a': 1, 'b': 2}
        assert deep_merge(base, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        result = deep_merge(base, {'x': {'b': 3, 'c': 4}})
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_dict_replaces_scalar(self):
        base = {'a': 1}
        assert deep_merge(base, {'a': {'nested': True}}) == {'a': {'nested': True}}

    def test_modifies_in_place(self):
        base = {'a': 1}
        deep_merge(base, {'b': 2})
        assert base == {'a': 1, 'b': 2}


# ── Defaults ──────────────────────────────────────────────────────────

class TestDefaults:
    def test_default_config_is_valid(self):
        config = default_config()
        assert isinstance(config, EngineConfig)
        assert config.density.radius_km == 25.0
        assert config.analysis.seed == 42

    def test_isolated_buffer_smaller_than_margin(self):
        a = AreaSection()
        assert a.isolated_buffer_km < a.cluster_margin_km

    def test_default_species_table(self):
        config = default_config()
        assert set(config.species) == {
            'Pongo abelii', 'Pongo pygmaeus', 'Pongo tapanuliensis',
        }
        tap = config.species['Pongo tapanuliensis']
        assert tap.growth_rate == 0.97
        assert tap.carrying_capacity == 1000.0
        assert tap.conservation_status == 'Critically Endangered'

    def test_unknown_species_falls_back(self):
        config = default_config()
        assert config.species_constants('Homo floresiensis') is DEFAULT_SPECIES_CONSTANTS

    def test_sections_are_independent_instances(self):
        c1, c2 = default_config(), default_config()
        c1.viability.years = 5
        assert c2.viability.years == 100


# ── YAML loading tests ───────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'analysis': {'seed': 7}, 'density': {'radius_km': 10.0}}, f)

        config = load_config(config_path)
        assert config.analysis.seed == 7
        assert config.density.radius_km == 10.0
        # Unspecified sections get defaults
        assert config.viability.n_simulations == 1000

    def test_unknown_keys_ignored(self, tmp_path):
        config_path = tmp_path / "test.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'density': {'radius_km': 12.0, 'bogus': 1}, 'extra': {}}, f)
        assert load_config(config_path).density.radius_km == 12.0

    def test_override_file_and_dict(self, tmp_path):
        base_path = tmp_path / "base.yaml"
        over_path = tmp_path / "override.yaml"
        with open(base_path, 'w') as f:
            yaml.dump({'viability': {'years': 50, 'n_simulations': 200}}, f)
        with open(over_path, 'w') as f:
            yaml.dump({'viability': {'years': 20}}, f)

        config = load_config(base_path, over_path,
                             overrides={'viability': {'n_simulations': 30}})
        assert config.viability.years == 20
        assert config.viability.n_simulations == 30

    def test_species_table_replaces_builtin(self, tmp_path):
        config_path = tmp_path / "species.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'species': {'Panthera tigris': {
                'growth_rate': 1.02, 'carrying_capacity': 400.0,
            }}}, f)
        config = load_config(config_path)
        assert list(config.species) == ['Panthera tigris']
        assert config.species['Panthera tigris'].growth_rate == 1.02
        assert isinstance(config.species['Panthera tigris'], SpeciesConstants)

    def test_empty_file_gives_defaults(self, tmp_path):
        config_path = tmp_path / "empty.yaml"
        config_path.write_text("")
        assert load_config(config_path).density.radius_km == 25.0

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_invalid_yaml_values_rejected(self, tmp_path):
        config_path = tmp_path / "bad.yaml"
        with open(config_path, 'w') as f:
            yaml.dump({'density': {'radius_km': -1.0}}, f)
        with pytest.raises(ValueError, match="radius_km"):
            load_config(config_path)

    def test_load_real_default_yaml(self):
        """configs/default.yaml matches the built-in defaults."""
        default_path = Path(__file__).parent.parent / "configs" / "default.yaml"
        config = load_config(default_path)
        assert config.density == DensitySection()
        assert config.areas == AreaSection()
        assert config.phylogeny == PhylogenySection()
        assert config.viability == ViabilitySection()
        assert config.species == default_config().species


# ── Validation tests ──────────────────────────────────────────────────

class TestValidation:
    def test_non_positive_radius(self):
        config = default_config()
        config.density.radius_km = 0.0
        with pytest.raises(ValueError, match="radius_km"):
            validate_config(config)

    def test_thresholds_must_decrease(self):
        config = default_config()
        config.density.high_threshold = 60
        with pytest.raises(ValueError, match="thresholds"):
            validate_config(config)

    def test_risk_weights_sum_to_one(self):
        config = default_config()
        config.areas.quality_weight = 0.5
        with pytest.raises(ValueError, match="weights"):
            validate_config(config)

    def test_unknown_tree_method(self):
        config = default_config()
        config.phylogeny.tree_method = "upgma"
        with pytest.raises(ValueError, match="tree_method"):
            validate_config(config)

    def test_neighbor_joining_accepted(self):
        config = default_config()
        config.phylogeny.tree_method = "neighbor_joining"
        validate_config(config)  # should not raise

    def test_environment_range(self):
        config = default_config()
        config.viability.env_low = 1.2
        with pytest.raises(ValueError, match="environmental"):
            validate_config(config)

    def test_parallel_workers(self):
        config = default_config()
        config.viability.parallel_workers = 0
        with pytest.raises(ValueError, match="parallel_workers"):
            validate_config(config)

    def test_negative_seed(self):
        config = default_config()
        config.analysis.seed = -1
        with pytest.raises(ValueError, match="seed"):
            validate_config(config)

    def test_species_carrying_capacity(self):
        config = default_config()
        config.species['Pongo abelii'].carrying_capacity = 0.0
        with pytest.raises(ValueError, match="Pongo abelii"):
            validate_config(config)

    def test_large_isolated_buffer_warns(self):
        config = default_config()
        config.areas.isolated_buffer_km = 10.0
        with pytest.warns(UserWarning, match="isolated_buffer_km"):
            validate_config(config)
