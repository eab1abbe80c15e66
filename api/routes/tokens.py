"""Allow-list and block-list management endpoints."""

from fastapi import APIRouter, HTTPException

from api.deps import get_registry, get_token_lists
from api.models import TokenChangeResponse, TokenEntry, TokenListResponse, TokenRequest
from storage.token_lists import ListName, TokenListError

router = APIRouter(tags=["tokens"])


@router.get("/tokens/{list_name}", response_model=TokenListResponse)
async def list_tokens(list_name: ListName):
    """List members of the allow or block list with their known tickers."""
    token_lists = get_token_lists()
    registry = get_registry()

    entries = []
    for pool_id in await token_lists.members(list_name):
        known = await registry.lookup(pool_id)
        entries.append(TokenEntry(
            pool_id=pool_id,
            ticker=known[0] if known else None,
            name=known[1] if known and known[1] else None,
        ))

    return TokenListResponse(list_name=list_name.value, tokens=entries, count=len(entries))


@router.post("/tokens/{list_name}", response_model=TokenChangeResponse)
async def add_token(list_name: ListName, request: TokenRequest):
    """Add a token by pool id or ticker. Adding a present token is a no-op."""
    token_lists = get_token_lists()
    registry = get_registry()

    if request.pool_id:
        pool_id = request.pool_id.strip()
    elif request.ticker:
        pool_id = await registry.find_pool(request.ticker)
        if pool_id is None:
            raise HTTPException(status_code=404, detail=f"Unknown ticker {request.ticker.upper()}")
    else:
        raise HTTPException(status_code=400, detail="ticker or pool_id is required")

    try:
        added = await token_lists.add(list_name, pool_id)
    except TokenListError as e:
        raise HTTPException(status_code=400, detail=str(e))

    known = await registry.lookup(pool_id)
    status = "added" if added else "already present"

    return TokenChangeResponse(
        list_name=list_name.value,
        pool_id=pool_id,
        ticker=known[0] if known else None,
        status=status,
    )


@router.delete("/tokens/{list_name}/{ticker_or_pool}", response_model=TokenChangeResponse)
async def remove_token(list_name: ListName, ticker_or_pool: str):
    """Remove a token by pool id or ticker."""
    token_lists = get_token_lists()
    registry = get_registry()

    pool_id = await registry.resolve(ticker_or_pool)
    if pool_id is None:
        raise HTTPException(status_code=404, detail=f"Unknown ticker {ticker_or_pool.upper()}")

    try:
        await token_lists.remove(list_name, pool_id)
    except TokenListError as e:
        raise HTTPException(status_code=404, detail=str(e))

    known = await registry.lookup(pool_id)

    return TokenChangeResponse(
        list_name=list_name.value,
        pool_id=pool_id,
        ticker=known[0] if known else None,
        status="removed",
    )
