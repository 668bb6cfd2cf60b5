"""Chain routes: rebuild trigger and read-only chain queries."""

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from chainledger.models.errors import ChainNotFoundError, RebuildInProgressError
from chainledger.schemas import (
    ChainListResponse,
    ChainStatisticsResponse,
    ChainTransactionsResponse,
    ProcessChainsResponse,
    SymbolsResponse,
)
from chainledger.services import chain_service

router = APIRouter(prefix="/api/chains", tags=["chains"])


@router.post("/process", response_model=ProcessChainsResponse)
async def process_chains():
    """Rebuild all chains from the full ledger"""
    try:
        return await run_in_threadpool(chain_service.process_chains)
    except RebuildInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Chain rebuild failed: {e}")
        raise HTTPException(status_code=500, detail=f"Chain rebuild failed: {e}")


@router.get("/stats", response_model=ChainStatisticsResponse)
async def get_chain_statistics():
    """Counters from the last completed rebuild"""
    try:
        return await run_in_threadpool(chain_service.get_chain_statistics)
    except Exception as e:
        logger.error(f"Error getting chain statistics: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/symbols", response_model=SymbolsResponse)
async def list_symbols():
    try:
        symbols = await run_in_threadpool(chain_service.list_symbols_with_chains)
        return {"symbols": symbols}
    except Exception as e:
        logger.error(f"Error listing chain symbols: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/symbol/{symbol}", response_model=ChainListResponse)
async def list_chains(symbol: str):
    symbol = symbol.strip().upper()
    try:
        chains = await run_in_threadpool(chain_service.list_chains, symbol)
        return {"symbol": symbol, "chains": chains}
    except Exception as e:
        logger.error(f"Error listing chains for {symbol}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{chain_id}/transactions", response_model=ChainTransactionsResponse)
async def get_chain_transactions(chain_id: str):
    """Transactions of one chain, each tagged OPENING / CLOSING / INTERMEDIATE"""
    try:
        transactions = await run_in_threadpool(chain_service.get_chain_transactions, chain_id)
        return {"chain_id": chain_id, "transactions": transactions}
    except ChainNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting transactions for chain {chain_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
