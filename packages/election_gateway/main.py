# packages/election_gateway/main.py

import logging
import os
from contextlib import asynccontextmanager, contextmanager
from typing import Optional

import sentry_sdk
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pythonjsonlogger import jsonlogger
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

from . import elections
from .chain import GatewayContext, format_ether
from .config import load_settings
from .errors import GatewayError
from .listener import VoteListener
from .schemas import (
    AdminSchema,
    BalanceResponse,
    CreateElectionSchema,
    DepositSchema,
    ElectionsResponse,
    ResultsResponse,
    TxResponse,
    VoteResponse,
    VoteSchema,
)

handler = logging.StreamHandler()
handler.setFormatter(jsonlogger.JsonFormatter())
logging.basicConfig(level=logging.INFO, handlers=[handler])
logger = logging.getLogger("election_gateway")

sentry_sdk.init(dsn=os.getenv("SENTRY_DSN"))

FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "*")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing configuration aborts startup here rather than on first request.
    ctx = GatewayContext.from_settings(load_settings())
    app.state.context = ctx
    listener: Optional[VoteListener] = None
    if ctx.settings.listener_enabled:
        listener = VoteListener(ctx)
        listener.start()
    yield
    if listener is not None:
        listener.stop()


app = FastAPI(title="Election Gateway", lifespan=lifespan)
app.add_middleware(SentryAsgiMiddleware)

Instrumentator().instrument(app).expose(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_ORIGIN],
    allow_credentials=FRONTEND_ORIGIN != "*",
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_context(request: Request) -> GatewayContext:
    ctx = getattr(request.app.state, "context", None)
    if ctx is None:
        raise RuntimeError("Gateway context is not initialised")
    return ctx


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": message, "code": code}, status_code=status_code
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return _error(exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    )
    logger.warning(f"Rejected request: {problems}", extra={"operation": request.url.path})
    return _error(400, problems or "Invalid request", "invalid_request")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("handler error", extra={"operation": request.url.path})
    return _error(500, "Internal Server Error", "internal_error")


@contextmanager
def operation(name: str, admin: Optional[str] = None):
    """Log a failed operation with its context before it becomes a response."""
    try:
        yield
    except GatewayError as exc:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            f"{name} failed: {exc.message}",
            extra={"operation": name, "admin": admin, "status": exc.status_code, "code": exc.code},
        )
        raise


@app.post("/create-election", response_model=TxResponse)
def create_election(payload: CreateElectionSchema, ctx: GatewayContext = Depends(get_context)):
    with operation("create-election", ctx.signer):
        tx_hash = elections.create_election(
            ctx,
            payload.electionName,
            payload.candidates,
            payload.voters,
            payload.depositAmount,
        )
    return TxResponse(txHash=tx_hash)


@app.get("/contract-balance/{admin}", response_model=BalanceResponse)
def contract_balance(admin: str, ctx: GatewayContext = Depends(get_context)):
    with operation("contract-balance", admin):
        balance = elections.read_balance(ctx, admin)
    return BalanceResponse(balance=f"{format_ether(balance)} ETH")


@app.post("/vote", response_model=VoteResponse)
def vote(payload: VoteSchema, ctx: GatewayContext = Depends(get_context)):
    with operation("vote", payload.admin):
        outcome = elections.cast_vote(ctx, payload.admin, payload.voter, payload.candidate)
    return VoteResponse(
        txHash=outcome.tx_hash,
        beforeBalance=format_ether(outcome.before_balance),
        afterBalance=format_ether(outcome.after_balance),
    )


@app.post("/results", response_model=ResultsResponse)
def results(payload: AdminSchema, ctx: GatewayContext = Depends(get_context)):
    with operation("results", payload.admin):
        result = elections.read_results(ctx, payload.admin)
    return ResultsResponse(result=result)


@app.post("/withdraw", response_model=TxResponse)
def withdraw(payload: AdminSchema, ctx: GatewayContext = Depends(get_context)):
    with operation("withdraw", payload.admin):
        tx_hash = elections.withdraw_funds(ctx, payload.admin)
    return TxResponse(txHash=tx_hash)


@app.post("/deposit", response_model=TxResponse)
def deposit(payload: DepositSchema, ctx: GatewayContext = Depends(get_context)):
    with operation("deposit", payload.admin):
        tx_hash = elections.deposit_funds(ctx, payload.admin, payload.amount)
    return TxResponse(txHash=tx_hash)


@app.get("/elections", response_model=ElectionsResponse)
def list_elections(ctx: GatewayContext = Depends(get_context)):
    with operation("elections"):
        addresses = elections.list_elections(ctx)
    return ElectionsResponse(elections=addresses)
