"""Tests for the credits ledger and the link economy."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from cubeharvest.domain import economy
from cubeharvest.domain.enums import LedgerEntryKind, UnitKind, UnitStatus
from cubeharvest.domain.errors import InsufficientCredits
from cubeharvest.domain.models import AstroUnit, CreditsLedger, Link, UnitID, World
from cubeharvest.domain.rules_config import EconomyRules


def _unit(
    name: str,
    kind: UnitKind,
    *,
    status: UnitStatus = UnitStatus.RUNNING,
    address: str | None = None,
    target: str | None = None,
) -> AstroUnit:
    return AstroUnit(
        id=UnitID(name), kind=kind, status=status, address=address, target_address=target
    )


def _world(*units: AstroUnit, balance: int = 0) -> World:
    world = World()
    world.ledger.credit(balance, LedgerEntryKind.GRANT, "start")
    for unit in units:
        world.units[unit.id] = unit
    return world


class TestCreditsLedger:
    def test_debit_and_credit_are_logged(self):
        ledger = CreditsLedger()
        ledger.credit(100, LedgerEntryKind.GRANT, "start")
        ledger.debit(30, LedgerEntryKind.SPEND, "deploy miner", unit_id=UnitID("miner-1"))

        assert ledger.balance == 70
        assert [entry.amount for entry in ledger.entries] == [100, -30]
        assert [entry.balance_after for entry in ledger.entries] == [100, 70]
        assert ledger.entries[1].unit_id == "miner-1"
        assert [entry.sequence for entry in ledger.entries] == [1, 2]

    def test_overdraw_raises_and_changes_nothing(self):
        ledger = CreditsLedger()
        ledger.credit(10, LedgerEntryKind.GRANT, "start")

        with pytest.raises(InsufficientCredits) as excinfo:
            ledger.debit(11, LedgerEntryKind.SPEND, "deploy")

        assert excinfo.value.cost == 11
        assert excinfo.value.balance == 10
        assert ledger.balance == 10
        assert len(ledger.entries) == 1

    def test_zero_credit_is_not_logged(self):
        ledger = CreditsLedger()
        assert ledger.credit(0, LedgerEntryKind.ACCRUAL, "tick") is None
        assert ledger.entries == []

    def test_drain_saturates_at_zero(self):
        ledger = CreditsLedger()
        ledger.credit(5, LedgerEntryKind.GRANT, "start")
        ledger.drain(8, LedgerEntryKind.UPKEEP, "upkeep")
        assert ledger.balance == 0

    def test_negative_amounts_rejected(self):
        ledger = CreditsLedger()
        with pytest.raises(ValueError):
            ledger.credit(-1, LedgerEntryKind.GRANT, "bad")


class TestLinks:
    def test_running_miner_targeting_running_processor_is_linked(self):
        world = _world(
            _unit("processor-1", UnitKind.PROCESSOR, address="10.0.0.5"),
            _unit("miner-1", UnitKind.MINER, address="10.0.0.6", target="10.0.0.5"),
        )

        assert economy.recompute_links(world) == frozenset(
            {Link(UnitID("miner-1"), UnitID("processor-1"))}
        )

    @pytest.mark.parametrize(
        "processor_status", [UnitStatus.PENDING, UnitStatus.TERMINATING, UnitStatus.GONE]
    )
    def test_processor_must_be_running(self, processor_status):
        world = _world(
            _unit("processor-1", UnitKind.PROCESSOR, status=processor_status, address="10.0.0.5"),
            _unit("miner-1", UnitKind.MINER, target="10.0.0.5"),
        )
        assert economy.recompute_links(world) == frozenset()

    def test_miner_targeting_another_miner_is_not_linked(self):
        world = _world(
            _unit("miner-a", UnitKind.MINER, address="10.0.0.5"),
            _unit("miner-b", UnitKind.MINER, target="10.0.0.5"),
        )
        assert economy.recompute_links(world) == frozenset()

    def test_recompute_is_deterministic(self):
        world = _world(
            _unit("processor-1", UnitKind.PROCESSOR, address="10.0.0.5"),
            _unit("miner-1", UnitKind.MINER, target="10.0.0.5"),
            _unit("miner-2", UnitKind.MINER, target="10.0.0.5"),
        )
        assert economy.recompute_links(world) == economy.recompute_links(world)
        assert len(economy.recompute_links(world)) == 2


class TestAccrual:
    def test_cap_limits_paying_links_per_processor(self):
        links = [Link(UnitID(f"miner-{i}"), UnitID("processor-1")) for i in range(5)]
        links.append(Link(UnitID("miner-x"), UnitID("processor-2")))
        capped = EconomyRules(max_links_per_processor=3)

        assert economy.paying_links(links, EconomyRules()) == 6
        assert economy.paying_links(links, capped) == 4

    @given(
        link_count=st.integers(min_value=0, max_value=20),
        ticks=st.integers(min_value=0, max_value=50),
        rate=st.integers(min_value=0, max_value=10),
    )
    def test_accrual_is_rate_times_links_times_ticks(self, link_count, ticks, rate):
        links = [Link(UnitID(f"miner-{i}"), UnitID("processor-1")) for i in range(link_count)]
        rules = EconomyRules(credit_rate_per_link=rate)

        earned = economy.accrue(links, ticks, rules)

        assert earned == rate * link_count * ticks
        assert earned >= 0

    def test_apply_tick_credits_rate_per_link(self):
        world = _world(
            _unit("processor-1", UnitKind.PROCESSOR, address="10.0.0.5"),
            _unit("miner-1", UnitKind.MINER, target="10.0.0.5"),
        )
        world.links = economy.recompute_links(world)

        delta = economy.apply_tick(world, EconomyRules(credit_rate_per_link=2), ticks=3)

        assert delta == 6
        assert world.tick == 3
        assert world.ledger.balance == 6

    def test_upkeep_every_interval(self):
        world = _world(_unit("miner-1", UnitKind.MINER), balance=10)
        rules = EconomyRules(upkeep_per_unit=2, upkeep_interval_ticks=3)

        economy.apply_tick(world, rules, ticks=2)
        assert world.ledger.balance == 10
        economy.apply_tick(world, rules)
        assert world.ledger.balance == 8
        assert world.ledger.entries[-1].kind == LedgerEntryKind.UPKEEP


class TestPrices:
    def test_price_escalates_with_live_units_of_same_kind(self):
        rules = EconomyRules(miner_cost=50, processor_cost=40, cost_escalation_per_unit=10)
        world = _world(
            _unit("miner-1", UnitKind.MINER),
            _unit("miner-2", UnitKind.MINER, status=UnitStatus.PENDING),
            _unit("miner-3", UnitKind.MINER, status=UnitStatus.GONE),
        )

        assert economy.unit_price(world, UnitKind.MINER, rules) == 70
        assert economy.price_list(world, rules) == {
            UnitKind.MINER: 70,
            UnitKind.PROCESSOR: 40,
        }
