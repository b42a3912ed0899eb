"""Random streams for the weekly spread step.

One master seed is split (SeedSequence.spawn) into a PCG64 generator per
stochastic stage, so changing how many draws one stage makes never shifts
another stage's sequence, and a run replays bit-for-bit from its seed.
Threaded dispersal draws its worker seeds from the dispersal stream only.

No module draws from numpy's global random state; every stochastic call
takes an explicit Generator from this hierarchy.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np


STREAM_NAMES = ('spores', 'dispersal', 'allocation', 'weather')


def create_rng_hierarchy(master_seed: int) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for each stochastic component.

    Streams created:
      - 'spores':     Poisson spore production
      - 'dispersal':  Kernel distance + direction draws
      - 'allocation': Multinomial split of landed spores
      - 'weather':    Future-scenario year sampling

    Args:
        master_seed: Master RNG seed (non-negative integer).

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_hierarchy(42)
        >>> rngs['spores'].poisson(4.4)  # reproducible
    """
    if master_seed < 0:
        raise ValueError(f"master_seed must be non-negative, got {master_seed}")
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(len(STREAM_NAMES))
    return {
        name: np.random.Generator(np.random.PCG64(seed))
        for name, seed in zip(STREAM_NAMES, child_seeds)
    }


def spawn_worker_rngs(
    rng: np.random.Generator,
    n_workers: int,
) -> List[np.random.Generator]:
    """Derive n_workers independent generators from a parent stream.

    The child seeds are drawn from the parent, so the parent advances by a
    fixed amount and the children are reproducible for a given parent state.

    Args:
        rng: Parent generator (e.g. the 'dispersal' stream).
        n_workers: Number of child generators.

    Returns:
        List of Generators, one per worker.
    """
    entropy = rng.integers(0, 2**62, size=n_workers, dtype=np.int64)
    return [
        np.random.Generator(np.random.PCG64(np.random.SeedSequence(int(e))))
        for e in entropy
    ]


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Bit-generator state of every stream, e.g. to checkpoint between weeks.

    The states are plain dicts; restore_rng_state() puts them back.
    """
    return {name: gen.bit_generator.state for name, gen in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Rewind streams to states captured by rng_state_snapshot().

    Raises:
        KeyError: A captured stream has no generator in rngs.
    """
    unknown = sorted(set(states) - set(rngs))
    if unknown:
        raise KeyError(f"no RNG stream named {unknown}; have {sorted(rngs)}")
    for name, state in states.items():
        rngs[name].bit_generator.state = state
