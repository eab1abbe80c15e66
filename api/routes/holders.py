"""Holder inspection, report and sweep endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Query

from api.deps import get_holders_reporter, get_reconciler
from api.models import (
    HolderReportEntryModel,
    HoldersReportResponse,
    HoldersResponse,
    SweepResponse,
    TransitionModel,
)
from detection.flow import parse_ddmm

logger = logging.getLogger(__name__)

router = APIRouter(tags=["holders"])


def _check_tracked(ticker: str) -> str:
    ticker = ticker.upper()
    if not get_reconciler().is_tracked(ticker):
        raise HTTPException(status_code=404, detail=f"Ticker {ticker} is not tracked")
    return ticker


@router.get("/holders/{ticker}", response_model=HoldersResponse)
async def list_holders(ticker: str):
    """Tracked holders of a ticker with their last known balances."""
    ticker = _check_tracked(ticker)
    reconciler = get_reconciler()

    holders = await reconciler.load_holders(ticker)
    ledger = await reconciler.load_ledger(ticker)
    return HoldersResponse(
        ticker=ticker,
        count=len(holders),
        last_sweep_date=ledger.last_sweep_date,
        holders=holders,
    )


@router.post("/holders/{ticker}/sweep", response_model=SweepResponse)
async def sweep_holders(
    ticker: str,
    force: bool = Query(default=False, description="Sweep even if already swept today"),
):
    """Re-check every holder's live balance."""
    ticker = _check_tracked(ticker)
    logger.info(f"Sweep of {ticker} requested via API (force={force})")

    result = await get_reconciler().sweep(ticker, force=force)
    return SweepResponse(
        ticker=result.ticker,
        skipped=result.skipped,
        checked=result.checked,
        failed=result.failed,
        transitions=[
            TransitionModel(
                address=t.address,
                action=t.action.value,
                previous=t.previous,
                current=t.current,
            )
            for t in result.transitions
        ],
    )


@router.get("/holders/{ticker}/{ddmm}", response_model=HoldersReportResponse)
async def holders_report(ticker: str, ddmm: str):
    """Addresses that changed position on a DDMM date, with their current balances."""
    ticker = _check_tracked(ticker)

    try:
        parse_ddmm(ddmm)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    report = await get_holders_reporter().build_holders_report(ticker, ddmm)
    return HoldersReportResponse(
        ticker=report.ticker,
        date=report.date,
        report=report.render(),
        entries=[HolderReportEntryModel(**entry.to_dict()) for entry in report.entries],
    )
