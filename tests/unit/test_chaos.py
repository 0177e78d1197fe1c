"""Tests for the chaos injector."""

from __future__ import annotations

import asyncio

import pytest

from cubeharvest.domain.enums import IntentOrigin, UnitKind, UnitStatus
from cubeharvest.domain.messages import DeleteIntent
from cubeharvest.domain.models import UnitID, UnitView, WorldSnapshot
from cubeharvest.domain.rules_config import ChaosRules
from cubeharvest.services.chaos import ChaosInjector


def _view(name: str, status: UnitStatus) -> UnitView:
    return UnitView(
        id=UnitID(name),
        kind=UnitKind.MINER,
        status=status,
        node_id=None,
        orphaned=False,
        address=None,
        target_address=None,
        gone_reason=None,
    )


def _snapshot(*units: UnitView, degraded: bool = False) -> WorldSnapshot:
    return WorldSnapshot(
        version=1,
        tick=0,
        nodes=(),
        units=units,
        links=(),
        balance=0,
        prices={},
        degraded=degraded,
    )


RULES = ChaosRules(enabled=True, min_interval_seconds=20.0, max_interval_seconds=60.0, seed=42)


def test_intervals_are_seeded_and_bounded():
    first = ChaosInjector(lambda _: None, _snapshot, rules=RULES)
    second = ChaosInjector(lambda _: None, _snapshot, rules=RULES)

    draws = [first.next_interval() for _ in range(20)]

    assert draws == [second.next_interval() for _ in range(20)]
    assert all(20.0 <= value <= 60.0 for value in draws)
    assert len(set(draws)) > 1


def test_only_running_units_are_targeted():
    snapshot = _snapshot(
        _view("miner-1", UnitStatus.PENDING),
        _view("miner-2", UnitStatus.RUNNING),
        _view("miner-3", UnitStatus.TERMINATING),
    )
    injector = ChaosInjector(lambda _: None, lambda: snapshot, rules=RULES)

    assert {injector.pick_target(snapshot) for _ in range(10)} == {"miner-2"}
    assert injector.last_draw["seed"].startswith("42:")


def test_nothing_to_hit_posts_nothing():
    posted: list[object] = []
    injector = ChaosInjector(
        posted.append, lambda: _snapshot(_view("miner-1", UnitStatus.PENDING)), rules=RULES
    )

    assert injector.fire_once() is None
    assert posted == []


def test_degraded_world_pauses_chaos():
    snapshot = _snapshot(_view("miner-1", UnitStatus.RUNNING), degraded=True)
    injector = ChaosInjector(lambda _: None, lambda: snapshot, rules=RULES)
    assert injector.pick_target(snapshot) is None


def test_fire_once_posts_chaos_delete():
    posted: list[object] = []
    snapshot = _snapshot(_view("miner-1", UnitStatus.RUNNING))
    injector = ChaosInjector(posted.append, lambda: snapshot, rules=RULES)

    intent = injector.fire_once()

    assert intent == DeleteIntent(unit_id="miner-1", origin=IntentOrigin.CHAOS)
    assert posted == [intent]


def test_bounds_validation():
    injector = ChaosInjector(lambda _: None, _snapshot, rules=RULES)
    with pytest.raises(ValueError):
        injector.set_bounds(10.0, 5.0)
    injector.set_bounds(1.0, 2.0)
    assert 1.0 <= injector.next_interval() <= 2.0


@pytest.mark.asyncio
async def test_scheduler_fires_until_stopped():
    posted: list[object] = []
    snapshot = _snapshot(_view("miner-1", UnitStatus.RUNNING))
    rules = ChaosRules(enabled=True, min_interval_seconds=0.01, max_interval_seconds=0.02, seed=1)
    injector = ChaosInjector(posted.append, lambda: snapshot, rules=rules)

    injector.start()
    assert injector.running
    for _ in range(100):
        if len(posted) >= 2:
            break
        await asyncio.sleep(0.01)
    await injector.stop()

    assert len(posted) >= 2
    assert not injector.running


@pytest.mark.asyncio
async def test_disabled_scheduler_stays_quiet():
    posted: list[object] = []
    snapshot = _snapshot(_view("miner-1", UnitStatus.RUNNING))
    rules = ChaosRules(enabled=False, min_interval_seconds=0.01, max_interval_seconds=0.01, seed=1)
    injector = ChaosInjector(posted.append, lambda: snapshot, rules=rules)

    injector.start()
    await asyncio.sleep(0.05)
    await injector.stop()

    assert posted == []
