"""HTTP routes for the CubeHarvest API."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, model_validator

from cubeharvest.api.runtime import ApiState
from cubeharvest.domain.enums import IntentOrigin, UnitKind
from cubeharvest.domain.errors import ClusterUnavailable, UnknownUnit, ValidationError
from cubeharvest.domain.messages import DeleteIntent, DeployIntent
from cubeharvest.domain.models import WorldSnapshot

router = APIRouter()


def get_state(request: Request) -> ApiState:
    state = getattr(request.app.state, "api_state", None)
    if state is None:  # pragma: no cover - FastAPI should always initialise state
        raise RuntimeError("API state not initialised")
    return state


ApiStateDep = Annotated[ApiState, Depends(get_state)]


class NodeSummary(BaseModel):
    id: str
    label: str
    capacity: float
    unit_ids: list[str]


class UnitSummary(BaseModel):
    id: str
    kind: str
    status: str
    node_id: str | None
    orphaned: bool
    address: str | None
    target_address: str | None
    gone_reason: str | None


class LinkSummary(BaseModel):
    miner_id: str
    processor_id: str


class WorldResponse(BaseModel):
    version: int
    tick: int
    credits: int
    degraded: bool
    prices: dict[str, int]
    nodes: list[NodeSummary]
    units: list[UnitSummary]
    links: list[LinkSummary]


class LedgerEntrySummary(BaseModel):
    sequence: int
    kind: str
    amount: int
    balance_after: int
    reason: str
    unit_id: str | None
    at: datetime


class DeployRequest(BaseModel):
    kind: UnitKind
    target_address: str | None = None


class UnitAccepted(BaseModel):
    unit_id: str
    status: str


class ChaosScheduleRequest(BaseModel):
    enabled: bool
    min_interval_seconds: float | None = Field(default=None, gt=0.0)
    max_interval_seconds: float | None = Field(default=None, gt=0.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> ChaosScheduleRequest:
        if (self.min_interval_seconds is None) != (self.max_interval_seconds is None):
            raise ValueError("min and max interval must be given together")
        if (
            self.min_interval_seconds is not None
            and self.max_interval_seconds is not None
            and self.min_interval_seconds > self.max_interval_seconds
        ):
            raise ValueError("min_interval_seconds must not exceed max_interval_seconds")
        return self


class ChaosScheduleResponse(BaseModel):
    enabled: bool
    running: bool
    min_interval_seconds: float
    max_interval_seconds: float
    session: int


def _world_response(snapshot: WorldSnapshot) -> WorldResponse:
    return WorldResponse(
        version=snapshot.version,
        tick=snapshot.tick,
        credits=snapshot.balance,
        degraded=snapshot.degraded,
        prices={str(kind): price for kind, price in snapshot.prices.items()},
        nodes=[
            NodeSummary(
                id=node.id,
                label=node.label,
                capacity=node.capacity,
                unit_ids=list(node.unit_ids),
            )
            for node in snapshot.nodes
        ],
        units=[
            UnitSummary(
                id=unit.id,
                kind=str(unit.kind),
                status=str(unit.status),
                node_id=unit.node_id,
                orphaned=unit.orphaned,
                address=unit.address,
                target_address=unit.target_address,
                gone_reason=str(unit.gone_reason) if unit.gone_reason else None,
            )
            for unit in snapshot.units
        ],
        links=[
            LinkSummary(miner_id=link.miner_id, processor_id=link.processor_id)
            for link in snapshot.links
        ],
    )


def _chaos_response(state: ApiState) -> ChaosScheduleResponse:
    chaos = state.chaos
    return ChaosScheduleResponse(
        enabled=chaos.enabled,
        running=chaos.running,
        min_interval_seconds=chaos.min_interval_seconds,
        max_interval_seconds=chaos.max_interval_seconds,
        session=chaos.session,
    )


@router.get("/health")
async def health(state: ApiStateDep) -> dict[str, object]:
    snapshot = state.loop.snapshot()
    return {
        "status": "degraded" if snapshot.degraded else "ok",
        "degraded": snapshot.degraded,
        "namespace": state.settings.kube_namespace,
        "tick_interval_seconds": state.settings.tick_interval_seconds,
    }


@router.get("/world", response_model=WorldResponse)
async def get_world(state: ApiStateDep) -> WorldResponse:
    return _world_response(state.loop.snapshot())


@router.get("/ledger", response_model=list[LedgerEntrySummary])
async def get_ledger(state: ApiStateDep) -> list[LedgerEntrySummary]:
    return [
        LedgerEntrySummary(
            sequence=entry.sequence,
            kind=str(entry.kind),
            amount=entry.amount,
            balance_after=entry.balance_after,
            reason=entry.reason,
            unit_id=entry.unit_id,
            at=entry.at,
        )
        for entry in state.loop.snapshot().ledger
    ]


@router.post("/units", response_model=UnitAccepted, status_code=status.HTTP_202_ACCEPTED)
async def deploy_unit(payload: DeployRequest, state: ApiStateDep) -> UnitAccepted:
    try:
        ack = await state.loop.submit(DeployIntent(payload.kind, payload.target_address))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ClusterUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return UnitAccepted(unit_id=ack.unit_id, status=str(ack.status))


@router.delete(
    "/units/{unit_id}", response_model=UnitAccepted, status_code=status.HTTP_202_ACCEPTED
)
async def delete_unit(unit_id: str, state: ApiStateDep) -> UnitAccepted:
    try:
        ack = await state.loop.submit(DeleteIntent(unit_id, IntentOrigin.PLAYER))
    except UnknownUnit as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ClusterUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return UnitAccepted(unit_id=ack.unit_id, status=str(ack.status))


@router.get("/chaos/schedule", response_model=ChaosScheduleResponse)
async def get_chaos_schedule(state: ApiStateDep) -> ChaosScheduleResponse:
    return _chaos_response(state)


@router.post("/chaos/schedule", response_model=ChaosScheduleResponse)
async def set_chaos_schedule(
    payload: ChaosScheduleRequest, state: ApiStateDep
) -> ChaosScheduleResponse:
    if payload.min_interval_seconds is not None and payload.max_interval_seconds is not None:
        state.chaos.set_bounds(payload.min_interval_seconds, payload.max_interval_seconds)
    state.chaos.set_enabled(payload.enabled)
    return _chaos_response(state)
