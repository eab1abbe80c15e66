"""Daily flow report endpoint."""

from fastapi import APIRouter, HTTPException

from api.deps import get_flow
from api.models import DailyFlowModel, FlowReportResponse
from detection.flow import parse_ddmm, render_report

router = APIRouter(tags=["flow"])


@router.get("/flow/{ticker}/{ddmm}", response_model=FlowReportResponse)
async def flow_report(ticker: str, ddmm: str):
    """Flow report for a tracked ticker on a DDMM date of the current year."""
    flow = get_flow()

    ticker = ticker.upper()
    if ticker not in flow.tickers:
        raise HTTPException(status_code=404, detail=f"Ticker {ticker} is not tracked")

    try:
        date = parse_ddmm(ddmm)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    day = date.strftime("%Y-%m-%d")
    daily = await flow.get_flow(ticker, day)

    return FlowReportResponse(
        ticker=ticker,
        date=day,
        report=render_report(ticker, date, daily),
        flow=DailyFlowModel(
            date=day,
            buy_count=daily.buy_count,
            sell_count=daily.sell_count,
            buy_value_btc=daily.buy_value_btc,
            sell_value_btc=daily.sell_value_btc,
        ),
    )
