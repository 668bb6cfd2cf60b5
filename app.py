#!/usr/bin/env python3

"""
Chain Ledger Web Service
FIFO lot matching and transaction chains over a brokerage ledger
"""

from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

load_dotenv()

from chainledger.dependencies import PORT, db
from chainledger.routers import chains, health

# Configure logging
logger.add(
    "logs/chainledger_{time}.log",
    rotation="1 day",
    retention="7 days",
    level="INFO"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.initialize_database()
    logger.info("Chain ledger ready")
    yield


app = FastAPI(
    title="Chain Ledger",
    description="Transaction chains and FIFO lot matching",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(chains.router)


if __name__ == "__main__":
    logger.info(f"Starting Chain Ledger on http://localhost:{PORT}")
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=PORT,
        log_level="info"
    )
