"""Seeded RNG factory for reproducible analyses.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between per-species viability streams
  - Bit-exact replay with the same master seed
  - A species' stream does not depend on which other species are present
    or on the order they were supplied in

Every stochastic routine in the package takes a `np.random.Generator`
argument; this module is the only place Generators are constructed.
"""

from __future__ import annotations

import zlib
from typing import Dict, Iterable, Mapping

import numpy as np


# Fixed top-level streams, in spawn order
_BASE_STREAMS = ('bootstrap',)

# spawn_key namespace for per-species streams (disjoint from spawn() children)
_SPECIES_NAMESPACE = 0x5EC1E5


def species_stream_key(species: str) -> str:
    return f'species_{species}'


def _species_seed(master_seed: int, species: str) -> np.random.SeedSequence:
    tag = zlib.crc32(species.encode('utf-8'))
    return np.random.SeedSequence(master_seed,
                                  spawn_key=(_SPECIES_NAMESPACE, tag))


def create_rng_hierarchy(
    master_seed: int,
    species: Iterable[str] = (),
) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for bootstrap and for each species.

    Streams created:
      - 'bootstrap':  Phylogenetic bootstrap resampling
      - 'species_<name>': Per-species viability simulation streams

    Species streams are keyed by a CRC32 of the species name rather than
    by position, so adding or reordering species leaves every other
    stream untouched.

    Args:
        master_seed: Master RNG seed (non-negative integer).
        species: Species names needing their own stream.

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_hierarchy(42, ['Pongo abelii'])
        >>> rngs['species_Pongo abelii'].random()  # reproducible
    """
    if master_seed < 0:
        raise ValueError(f"master_seed must be non-negative, got {master_seed}")

    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(len(_BASE_STREAMS))

    rngs: Dict[str, np.random.Generator] = {}
    for stream, seed in zip(_BASE_STREAMS, child_seeds):
        rngs[stream] = np.random.Generator(np.random.PCG64(seed))
    for name in sorted(set(species)):
        rngs[species_stream_key(name)] = np.random.Generator(
            np.random.PCG64(_species_seed(master_seed, name))
        )
    return rngs


def get_species_rng(
    rngs: Mapping[str, np.random.Generator],
    species: str,
) -> np.random.Generator:
    """Get the RNG stream for a specific species.

    Raises:
        KeyError: If the species doesn't have a stream.
    """
    key = species_stream_key(species)
    if key not in rngs:
        available = sorted(k[len('species_'):] for k in rngs
                           if k.startswith('species_'))
        raise KeyError(
            f"No RNG stream for species '{species}'. "
            f"Available species: {available}"
        )
    return rngs[key]
