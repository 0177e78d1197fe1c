"""Domain model for CubeHarvest.

This package holds everything that can run purely in memory:

* Dataclasses for the world projection and its snapshots (see :mod:`models`).
* Enumerations, the unit lifecycle table and the error taxonomy.
* Rule configuration objects (see :mod:`rules_config`).
* Pure rule functions applying cluster events (:mod:`world`) and the credit
  economy (:mod:`economy`).

The services layer wires these rules to the cluster; nothing in here performs
I/O.
"""

from . import economy, enums, errors, messages, models, rules_config, world

__all__ = [
    "economy",
    "enums",
    "errors",
    "messages",
    "models",
    "rules_config",
    "world",
]
