"""Utility functions for the CubeHarvest orchestrator."""

from cubeharvest.utils.rng import (
    generate_seed,
    new_session_seed,
    random_choice,
    random_uniform,
)

__all__ = [
    "generate_seed",
    "new_session_seed",
    "random_choice",
    "random_uniform",
]
