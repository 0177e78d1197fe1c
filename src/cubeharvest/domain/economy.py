"""Credit economy: link topology, payouts, prices and upkeep.

Links are recomputed from scratch instead of being patched incrementally.
Unit counts stay in the tens, so a full pass is cheap and the result depends
only on the current unit statuses and addresses.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable

from .enums import LedgerEntryKind, UnitKind, UnitStatus
from .models import Link, UnitID, World
from .rules_config import EconomyRules

logger = logging.getLogger(__name__)


def recompute_links(world: World) -> frozenset[Link]:
    """Return every Miner -> Processor pairing that is currently valid."""

    processors_by_address: dict[str, UnitID] = {}
    for unit in world.units.values():
        if unit.kind == UnitKind.PROCESSOR and unit.status == UnitStatus.RUNNING and unit.address:
            processors_by_address[unit.address] = unit.id

    links: set[Link] = set()
    for unit in world.units.values():
        if unit.kind != UnitKind.MINER or unit.status != UnitStatus.RUNNING:
            continue
        if not unit.target_address:
            continue
        processor_id = processors_by_address.get(unit.target_address)
        if processor_id is not None:
            links.add(Link(miner_id=unit.id, processor_id=processor_id))
    return frozenset(links)


def paying_links(links: Iterable[Link], rules: EconomyRules) -> int:
    """Count links that earn credits, honouring the per-processor cap."""

    per_processor = Counter(link.processor_id for link in links)
    cap = rules.max_links_per_processor
    if cap is None:
        return sum(per_processor.values())
    return sum(min(count, cap) for count in per_processor.values())


def accrue(links: Iterable[Link], ticks: int, rules: EconomyRules) -> int:
    """Credits earned by ``links`` over ``ticks`` economy ticks."""

    if ticks <= 0:
        return 0
    return rules.credit_rate_per_link * paying_links(links, rules) * ticks


def unit_price(world: World, kind: UnitKind, rules: EconomyRules) -> int:
    """Current price of a unit; grows with the live units of the same kind."""

    return rules.base_cost(kind) + rules.cost_escalation_per_unit * len(world.live_units(kind))


def price_list(world: World, rules: EconomyRules) -> dict[UnitKind, int]:
    return {kind: unit_price(world, kind, rules) for kind in UnitKind}


def upkeep_due(world: World, rules: EconomyRules) -> int:
    if rules.upkeep_per_unit <= 0 or world.tick % rules.upkeep_interval_ticks != 0:
        return 0
    return rules.upkeep_per_unit * len(world.live_units())


def apply_tick(world: World, rules: EconomyRules, ticks: int = 1) -> int:
    """Advance the economy clock and post accrual and upkeep to the ledger.

    Returns the net change of the balance.
    """

    before = world.ledger.balance
    for _ in range(max(ticks, 0)):
        world.tick += 1
        earned = accrue(world.links, 1, rules)
        world.ledger.credit(earned, LedgerEntryKind.ACCRUAL, f"tick {world.tick}")
        upkeep = upkeep_due(world, rules)
        if upkeep:
            world.ledger.drain(upkeep, LedgerEntryKind.UPKEEP, f"upkeep at tick {world.tick}")
    delta = world.ledger.balance - before
    if delta:
        logger.debug("tick %d: balance %d -> %d", world.tick, before, world.ledger.balance)
    return delta
