"""Declarative rule configuration for the game economy and chaos."""

from __future__ import annotations

from dataclasses import dataclass

from cubeharvest.config import Settings

from .enums import UnitKind


@dataclass(frozen=True, slots=True)
class EconomyRules:
    """Credit prices, payouts and upkeep."""

    starting_credits: int = 100
    miner_cost: int = 50
    processor_cost: int = 50
    cost_escalation_per_unit: int = 10
    credit_rate_per_link: int = 1
    max_links_per_processor: int | None = None
    upkeep_per_unit: int = 0
    upkeep_interval_ticks: int = 3

    def base_cost(self, kind: UnitKind) -> int:
        return self.miner_cost if kind == UnitKind.MINER else self.processor_cost


@dataclass(frozen=True, slots=True)
class DeployRules:
    """Unit creation constraints."""

    deploy_timeout_seconds: float = 30.0
    gone_retention: int = 50


@dataclass(frozen=True, slots=True)
class ChaosRules:
    """Bounds for the randomized chaos schedule."""

    enabled: bool = True
    min_interval_seconds: float = 20.0
    max_interval_seconds: float = 60.0
    seed: int | None = None


@dataclass(frozen=True, slots=True)
class RulesConfig:
    """Top-level configuration container for all subsystems."""

    economy: EconomyRules = EconomyRules()
    deploy: DeployRules = DeployRules()
    chaos: ChaosRules = ChaosRules()


DEFAULT_RULES = RulesConfig()


def rules_from_settings(settings: Settings) -> RulesConfig:
    """Build the rule set described by the runtime settings."""

    return RulesConfig(
        economy=EconomyRules(
            starting_credits=settings.starting_credits,
            miner_cost=settings.miner_cost,
            processor_cost=settings.processor_cost,
            cost_escalation_per_unit=settings.cost_escalation_per_unit,
            credit_rate_per_link=settings.credit_rate_per_link,
            max_links_per_processor=settings.max_links_per_processor,
            upkeep_per_unit=settings.upkeep_per_unit,
            upkeep_interval_ticks=settings.upkeep_interval_ticks,
        ),
        deploy=DeployRules(
            deploy_timeout_seconds=settings.deploy_timeout_seconds,
            gone_retention=settings.gone_retention,
        ),
        chaos=ChaosRules(
            enabled=settings.chaos_enabled,
            min_interval_seconds=settings.chaos_min_interval_seconds,
            max_interval_seconds=settings.chaos_max_interval_seconds,
            seed=settings.chaos_seed,
        ),
    )
