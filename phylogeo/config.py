"""Configuration system for PhyloGeo.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → override yaml → programmatic overrides

Sections map 1:1 to YAML top-level keys. The `species` key holds the
species constants table (growth rate, carrying capacity, density factor,
critical-population floor, IUCN status, trend) consumed by the area,
diversity and viability stages.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


# ═══════════════════════════════════════════════════════════════════════
# SPECIES CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SpeciesConstants:
    """Per-species parameters supplied by the configuration collaborator."""
    common_name: str = "Unknown"
    growth_rate: float = 1.0            # per-year multiplier
    carrying_capacity: float = 10000.0
    density_factor: float = 8.0         # individuals per occurrence record
    critical_population: int = 50       # area-level critical floor
    conservation_status: str = "Unknown"
    population_trend: str = "Unknown"


DEFAULT_SPECIES_CONSTANTS = SpeciesConstants()


def _default_species_table() -> Dict[str, SpeciesConstants]:
    return {
        'Pongo abelii': SpeciesConstants(
            common_name='Sumatran Orangutan',
            growth_rate=0.98,
            carrying_capacity=15000.0,
            density_factor=8.0,
            critical_population=50,
            conservation_status='Critically Endangered',
            population_trend='Decreasing',
        ),
        'Pongo pygmaeus': SpeciesConstants(
            common_name='Bornean Orangutan',
            growth_rate=0.985,
            carrying_capacity=100000.0,
            density_factor=8.0,
            critical_population=50,
            conservation_status='Critically Endangered',
            population_trend='Decreasing',
        ),
        'Pongo tapanuliensis': SpeciesConstants(
            common_name='Tapanuli Orangutan',
            growth_rate=0.97,
            carrying_capacity=1000.0,
            density_factor=8.0,
            critical_population=100,
            conservation_status='Critically Endangered',
            population_trend='Decreasing',
        ),
    }


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class DensitySection:
    """Neighbour counting and clustering radius."""
    radius_km: float = 25.0
    very_high_threshold: int = 50
    high_threshold: int = 20
    medium_threshold: int = 10
    low_threshold: int = 3


@dataclass
class AreaSection:
    """Area synthesis: buffers, population floor, risk weights."""
    cluster_margin_km: float = 5.0
    isolated_buffer_km: float = 2.5     # smaller than the cluster margin
    min_viable_population: float = 500.0
    density_weight: float = 0.4
    population_weight: float = 0.4
    quality_weight: float = 0.2
    min_risk: float = 0.05
    max_risk: float = 0.95
    neutral_genetic_diversity: float = 0.5


@dataclass
class DiversitySection:
    min_reliable_samples: int = 10
    low_shannon_threshold: float = 0.5


@dataclass
class PhylogenySection:
    """Tree construction and bootstrap resampling.

    tree_method: "species_grouping":  species-labelled subtrees under a root
                 "neighbor_joining":  Saitou–Nei NJ over the JC matrix
    """
    tree_method: str = "species_grouping"
    n_bootstrap: int = 10
    max_bootstrap: int = 10
    fallback_bootstrap_value: float = 75.0


@dataclass
class ViabilitySection:
    """Monte-Carlo population viability parameters."""
    years: int = 100
    n_simulations: int = 1000
    env_low: float = 0.9
    env_high: float = 1.1
    diversity_threshold: float = 0.5    # below → genetic_effect penalty
    low_diversity_effect: float = 0.9
    small_population: float = 50.0      # demographic noise below this
    parallel_workers: int = 1
    default_initial_size: float = 0.0   # used when a species has no data


@dataclass
class PrioritySection:
    """Urgency ranking and corridor recommendation."""
    population_scale: float = 1000.0
    top_n: int = 10
    corridor_max_km: float = 50.0


@dataclass
class AnalysisSection:
    seed: int = 42


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Load from YAML via `load_config()`.
    """
    analysis: AnalysisSection = field(default_factory=AnalysisSection)
    density: DensitySection = field(default_factory=DensitySection)
    areas: AreaSection = field(default_factory=AreaSection)
    diversity: DiversitySection = field(default_factory=DiversitySection)
    phylogeny: PhylogenySection = field(default_factory=PhylogenySection)
    viability: ViabilitySection = field(default_factory=ViabilitySection)
    priority: PrioritySection = field(default_factory=PrioritySection)
    species: Dict[str, SpeciesConstants] = field(
        default_factory=_default_species_table
    )

    def species_constants(self, species: str) -> SpeciesConstants:
        """Constants for `species`, falling back to the generic defaults."""
        return self.species.get(species, DEFAULT_SPECIES_CONSTANTS)


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


_SECTION_MAP = {
    'analysis': AnalysisSection,
    'density': DensitySection,
    'areas': AreaSection,
    'diversity': DiversitySection,
    'phylogeny': PhylogenySection,
    'viability': ViabilitySection,
    'priority': PrioritySection,
}


def _yaml_to_config(data: Dict) -> EngineConfig:
    """Convert a merged YAML dict to an EngineConfig."""
    sections: Dict[str, Any] = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    # A species table in YAML replaces the built-in one entirely
    if isinstance(data.get('species'), dict):
        sections['species'] = {
            str(name): _dict_to_section(SpeciesConstants, values or {})
            for name, values in data['species'].items()
        }

    return EngineConfig(**sections)


def validate_config(config: EngineConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure."""
    d = config.density
    if d.radius_km <= 0:
        raise ValueError(f"density.radius_km must be positive, got {d.radius_km}")
    if not (d.very_high_threshold > d.high_threshold > d.medium_threshold
            > d.low_threshold >= 1):
        raise ValueError(
            "density thresholds must be strictly decreasing and ≥ 1, got "
            f"{d.very_high_threshold}/{d.high_threshold}/"
            f"{d.medium_threshold}/{d.low_threshold}"
        )

    a = config.areas
    if a.cluster_margin_km < 0 or a.isolated_buffer_km <= 0:
        raise ValueError(
            "areas.cluster_margin_km must be >= 0 and "
            "areas.isolated_buffer_km must be > 0"
        )
    if a.isolated_buffer_km > a.cluster_margin_km:
        warnings.warn(
            f"areas.isolated_buffer_km ({a.isolated_buffer_km}) exceeds "
            f"cluster_margin_km ({a.cluster_margin_km}); isolated areas "
            f"will be larger than the margin around clusters.",
            UserWarning,
            stacklevel=2,
        )
    if a.min_viable_population <= 0:
        raise ValueError("areas.min_viable_population must be positive")
    weight_sum = a.density_weight + a.population_weight + a.quality_weight
    if abs(weight_sum - 1.0) > 1e-6:
        raise ValueError(
            f"areas risk weights must sum to 1, got {weight_sum:.4f}"
        )
    if not (0.0 <= a.min_risk <= a.max_risk <= 1.0):
        raise ValueError(
            f"areas risk clamp must satisfy 0 <= min <= max <= 1, "
            f"got [{a.min_risk}, {a.max_risk}]"
        )
    if not (0.0 <= a.neutral_genetic_diversity <= 1.0):
        raise ValueError("areas.neutral_genetic_diversity must be in [0, 1]")

    if config.diversity.min_reliable_samples < 1:
        raise ValueError("diversity.min_reliable_samples must be >= 1")

    p = config.phylogeny
    valid_methods = {"species_grouping", "neighbor_joining"}
    if p.tree_method not in valid_methods:
        raise ValueError(
            f"phylogeny.tree_method must be one of {valid_methods}, "
            f"got '{p.tree_method}'"
        )
    if p.max_bootstrap < 1 or p.n_bootstrap < 0:
        raise ValueError(
            "phylogeny.max_bootstrap must be >= 1 and n_bootstrap >= 0"
        )

    v = config.viability
    if v.years < 1:
        raise ValueError(f"viability.years must be >= 1, got {v.years}")
    if v.n_simulations < 1:
        raise ValueError(
            f"viability.n_simulations must be >= 1, got {v.n_simulations}"
        )
    if not (0.0 < v.env_low <= v.env_high):
        raise ValueError(
            f"viability environmental range must satisfy 0 < low <= high, "
            f"got [{v.env_low}, {v.env_high}]"
        )
    if v.parallel_workers < 1:
        raise ValueError("viability.parallel_workers must be >= 1")

    pr = config.priority
    if pr.population_scale <= 0:
        raise ValueError("priority.population_scale must be positive")
    if pr.top_n < 0 or pr.corridor_max_km <= 0:
        raise ValueError(
            "priority.top_n must be >= 0 and corridor_max_km positive"
        )

    if config.analysis.seed < 0:
        raise ValueError("analysis.seed must be non-negative")

    for name, sc in config.species.items():
        if sc.growth_rate < 0:
            raise ValueError(f"species['{name}'].growth_rate must be >= 0")
        if sc.carrying_capacity <= 0:
            raise ValueError(
                f"species['{name}'].carrying_capacity must be positive"
            )
        if sc.density_factor <= 0:
            raise ValueError(f"species['{name}'].density_factor must be positive")
        if sc.critical_population < 0:
            raise ValueError(
                f"species['{name}'].critical_population must be >= 0"
            )


def load_config(
    base_path: Union[str, Path],
    override_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> EngineConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → override file → programmatic overrides.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if override_path is not None:
        override_path = Path(override_path)
        if override_path.exists():
            with open(override_path) as f:
                deep_merge(config_dict, yaml.safe_load(f) or {})

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> EngineConfig:
    """Return an EngineConfig with all default values."""
    config = EngineConfig()
    validate_config(config)
    return config
