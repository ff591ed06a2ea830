from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    ConcurrencyConflict,
    Conflict,
    ImmutableJournalError,
    InsufficientAvailableStock,
    InsufficientStock,
    InvalidRequest,
    NotFound,
    PersistenceError,
    StockLedgerError,
)
from stockledger.core.logging_config import RequestLoggingMiddleware, get_logger, setup_logging
from stockledger.db.database import create_db_and_tables
from stockledger.routers.locations import router as locations_router
from stockledger.routers.parts import router as parts_router
from stockledger.routers.transactions import router as transactions_router

logger = get_logger(__name__)

STATUS_BY_ERROR = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    InsufficientStock: status.HTTP_409_CONFLICT,
    InsufficientAvailableStock: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    ConcurrencyConflict: status.HTTP_409_CONFLICT,
    ImmutableJournalError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    await create_db_and_tables()
    logger.info(f"{settings.service_name} started ({settings.environment})")
    yield


app = FastAPI(
    title="Stock Ledger API",
    description="Spare-parts stock ledger for maintenance management",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StockLedgerError)
async def stock_ledger_error_handler(request: Request, exc: StockLedgerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type in type(exc).__mro__:
        if error_type in STATUS_BY_ERROR:
            status_code = STATUS_BY_ERROR[error_type]
            break
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors()), "code": InvalidRequest.code},
    )


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.service_name}


app.include_router(parts_router, prefix="/parts", tags=["parts"])
app.include_router(locations_router, prefix="/locations", tags=["locations"])
app.include_router(transactions_router, prefix="/transactions", tags=["transactions"])

if __name__ == "__main__":
    uvicorn.run("stockledger.main:app", host="0.0.0.0", port=8000, reload=True)
