from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from salesdesk.crm.enums import DealStage, LeadPipelineStage
from salesdesk.crm.models import CRMDeal
from salesdesk.crm.reporting import build_deal_board, fill_counts, summarize_client_deals


CLIENT_ID = uuid.uuid4()
OWNER_ID = uuid.uuid4()


def _deal(stage: DealStage, value: str, *, deleted: bool = False) -> CRMDeal:
    now = datetime.now(timezone.utc)
    return CRMDeal(
        id=uuid.uuid4(),
        title=f"{stage.value} deal",
        value=Decimal(value),
        currency="INR",
        stage=stage.value,
        probability=0,
        client_id=CLIENT_ID,
        owner_id=OWNER_ID,
        is_deleted=deleted,
        created_at=now,
        updated_at=now,
    )


def test_fill_counts_zero_fills_every_member() -> None:
    assert fill_counts(LeadPipelineStage, {"CONTACTED": 3}) == {
        "NEW": 0,
        "CONTACTED": 3,
        "PROPOSAL": 0,
        "NEGOTIATION": 0,
    }


def test_board_has_all_seven_buckets_even_when_empty() -> None:
    board = build_deal_board([])

    assert list(board.deals_by_stage) == [stage.value for stage in DealStage]
    assert all(value == 0 for value in board.stage_values.values())
    assert board.total_value == 0
    assert board.total == 0


def test_open_pipeline_total_excludes_closed_deals() -> None:
    deals = [
        _deal(DealStage.QUALIFICATION, "100"),
        _deal(DealStage.NEGOTIATION, "250.50"),
        _deal(DealStage.NEGOTIATION, "49.50"),
        _deal(DealStage.CLOSED_WON, "1000"),
        _deal(DealStage.CLOSED_LOST, "70"),
    ]

    board = build_deal_board(deals)

    assert board.total == 5
    assert len(board.deals_by_stage["NEGOTIATION"]) == 2
    assert board.stage_values["NEGOTIATION"] == Decimal("300.00")
    assert board.stage_values["CLOSED_WON"] == Decimal("1000")
    assert board.total_value == Decimal("400.00")


def test_archived_deals_never_count_toward_open_total() -> None:
    board = build_deal_board([_deal(DealStage.CLOSED_LOST, "80", deleted=True), _deal(DealStage.PROPOSAL_PRICE_QUOTE, "5")])

    assert board.stage_values["CLOSED_LOST"] == Decimal("80")
    assert board.total_value == Decimal("5")


def test_client_summary_skips_archived_and_counts_open() -> None:
    summary = summarize_client_deals(
        [
            _deal(DealStage.QUALIFICATION, "100"),
            _deal(DealStage.CLOSED_WON, "900"),
            _deal(DealStage.CLOSED_LOST, "40", deleted=True),
        ]
    )

    assert summary.total_deals_value == Decimal("1000")
    assert summary.active_deals_count == 1
