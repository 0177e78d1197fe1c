"""Deterministic random number generation for chaos scheduling.

Every random decision is derived from a seed string built from the game
session, a counter and a context label, so a chaos run can be replayed
exactly:

- Reproducibility: the same seed always produces the same result
- Audit trail: every draw returns the seed it came from

Examples:
    >>> seed = generate_seed(session=7, counter=3, context="chaos_interval")
    >>> result = random_uniform(seed, 20.0, 60.0)
    >>> 20.0 <= result["value"] <= 60.0
    True

    >>> result = random_choice(seed, ["miner-a", "processor-b"])
    >>> result["choice"] in {"miner-a", "processor-b"}
    True
"""

import hashlib
import random
from typing import Any


def generate_seed(session: int, counter: int, context: str) -> str:
    """Generate a deterministic seed string.

    Format: "session:counter:context"

    Args:
        session: Identifier of the game session (the configured chaos seed)
        counter: How many draws of this kind happened before
        context: What the draw is for (e.g. 'chaos_interval', 'chaos_target')

    Returns:
        Seed string in format "session:counter:context"

    Examples:
        >>> generate_seed(1, 42, "chaos_target")
        '1:42:chaos_target'

    Raises:
        ValueError: If session or counter is negative
    """
    if session < 0:
        raise ValueError(f"session must be non-negative, got {session}")
    if counter < 0:
        raise ValueError(f"counter must be non-negative, got {counter}")

    return f"{session}:{counter}:{context}"


def _seed_to_int(seed: str) -> int:
    """Convert seed string to a stable 64-bit integer for random.Random()."""
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    # Use first 8 bytes for a 64-bit integer
    return int.from_bytes(digest[:8], "big", signed=False)


def random_choice(seed: str, options: list[Any]) -> dict[str, Any]:
    """Choose uniformly from options with a deterministic seed.

    Args:
        seed: Deterministic seed string
        options: Candidates to pick from

    Returns:
        Dictionary containing:
            - choice: The selected option
            - index: Index of the selected option
            - seed: The seed used

    Raises:
        ValueError: If options list is empty
    """
    if not options:
        raise ValueError("options list cannot be empty")

    rng = random.Random(_seed_to_int(seed))
    index = rng.randint(0, len(options) - 1)

    return {
        "choice": options[index],
        "index": index,
        "seed": seed,
    }


def random_uniform(seed: str, min_val: float, max_val: float) -> dict[str, Any]:
    """Draw a float from ``[min_val, max_val]`` with a deterministic seed.

    Args:
        seed: Deterministic seed string
        min_val: Lower bound (inclusive)
        max_val: Upper bound (inclusive)

    Returns:
        Dictionary containing:
            - value: The drawn float
            - min: The lower bound
            - max: The upper bound
            - seed: The seed used

    Raises:
        ValueError: If min_val > max_val
    """
    if min_val > max_val:
        raise ValueError(f"min_val ({min_val}) cannot be greater than max_val ({max_val})")

    rng = random.Random(_seed_to_int(seed))
    value = rng.uniform(min_val, max_val)

    return {
        "value": value,
        "min": min_val,
        "max": max_val,
        "seed": seed,
    }


def new_session_seed() -> int:
    """Pick a fresh session number when no seed was configured."""
    return random.SystemRandom().randrange(0, 2**31)
