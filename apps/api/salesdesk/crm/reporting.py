"""Read-side projections over leads, deals and clients, recomputed per request."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from salesdesk.crm.enums import CLOSED_DEAL_STAGES, DealStage
from salesdesk.crm.models import CRMDeal
from salesdesk.crm.schemas import DealBoardRead, DealRead


ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class ClientDealSummary:
    total_deals_value: Decimal
    active_deals_count: int


def fill_counts(keys: type[StrEnum], counts: Mapping[str, int]) -> dict[str, int]:
    """Every member of ``keys`` mapped to its count, zero when absent."""

    return {member.value: int(counts.get(member.value, 0)) for member in keys}


def is_open(deal: CRMDeal) -> bool:
    return deal.stage not in CLOSED_DEAL_STAGES


def build_deal_board(deals: Sequence[CRMDeal]) -> DealBoardRead:
    """Group deals into the fixed stage buckets.

    Closed deals appear in their bucket and in ``stage_values`` but are left out
    of ``total_value``, which only sums the open pipeline.
    """

    reads = [DealRead.model_validate(deal) for deal in deals]
    by_stage: dict[str, list[DealRead]] = {stage.value: [] for stage in DealStage}
    stage_values: dict[str, Decimal] = {stage.value: ZERO for stage in DealStage}
    total_value = ZERO

    for deal, read in zip(deals, reads):
        by_stage[deal.stage].append(read)
        stage_values[deal.stage] += deal.value
        if is_open(deal) and not deal.is_deleted:
            total_value += deal.value

    return DealBoardRead(
        deals=reads,
        deals_by_stage=by_stage,
        stage_values=stage_values,
        total_value=total_value,
        total=len(reads),
    )


def summarize_client_deals(deals: Iterable[CRMDeal]) -> ClientDealSummary:
    live = [deal for deal in deals if not deal.is_deleted]
    return ClientDealSummary(
        total_deals_value=sum((deal.value for deal in live), ZERO),
        active_deals_count=sum(1 for deal in live if is_open(deal)),
    )
