import uuid

import pytest
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport
from pydantic import BaseModel

from bank_loadgen.aggregator import MetricsAggregator
from bank_loadgen.api import BankApi
from bank_loadgen.client import HttpxExecutor
from bank_loadgen.pool import Identity, IdentityPool


class _Credentials(BaseModel):
    name: str
    password: str


class _Transaction(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: float
    type: str


def create_bank_app(opening_balance: float = 100.0) -> FastAPI:
    """In-memory stand-in for the banking API."""
    app = FastAPI()
    app.state.users = {}
    app.state.tokens = {}
    app.state.accounts = {}
    app.state.transactions = []
    app.state.calls = []
    app.state.failing = set()

    @app.middleware("http")
    async def track(request: Request, call_next):
        app.state.calls.append((request.method, request.url.path))
        if (request.method, request.url.path) in app.state.failing:
            return JSONResponse({"error": "injected"}, status_code=500)
        return await call_next(request)

    def current_user(authorization: str = Header(default="")) -> str:
        token = authorization.removeprefix("Bearer ")
        if token not in app.state.tokens:
            raise HTTPException(status_code=401)
        return app.state.tokens[token]

    @app.post("/register", status_code=201)
    async def register(body: _Credentials) -> dict:
        if body.name in app.state.users:
            raise HTTPException(status_code=409)
        user_id = str(uuid.uuid4())
        app.state.users[body.name] = {"id": user_id, "password": body.password}
        return {"user_id": user_id, "name": body.name}

    @app.post("/login")
    async def login(body: _Credentials) -> dict:
        user = app.state.users.get(body.name)
        if user is None or user["password"] != body.password:
            raise HTTPException(status_code=401)
        token = f"tok-{uuid.uuid4()}"
        app.state.tokens[token] = user["id"]
        return {"token": token, "user_id": user["id"]}

    @app.post("/accounts", status_code=201)
    async def create_account(user_id: str = Depends(current_user)) -> dict:
        account_id = str(uuid.uuid4())
        app.state.accounts[account_id] = {"owner": user_id, "balance": opening_balance}
        return {"account_id": account_id, "balance": opening_balance, "status": "active"}

    @app.get("/accounts")
    async def list_accounts(user_id: str = Depends(current_user)) -> dict:
        accounts = [{"id": k, **v} for k, v in app.state.accounts.items() if v["owner"] == user_id]
        return {"accounts": accounts, "total": len(accounts)}

    @app.post("/transactions", status_code=201)
    async def create_transaction(body: _Transaction, user_id: str = Depends(current_user)) -> dict:
        source = app.state.accounts.get(body.from_account_id)
        target = app.state.accounts.get(body.to_account_id)
        if source is None or target is None or source["owner"] != user_id:
            raise HTTPException(status_code=403)
        if body.from_account_id == body.to_account_id or body.amount > source["balance"]:
            raise HTTPException(status_code=400, detail="insufficient funds")
        source["balance"] -= body.amount
        target["balance"] += body.amount
        app.state.transactions.append(body.model_dump())
        return {"id": str(uuid.uuid4()), "status": "completed"}

    @app.get("/health")
    async def health() -> dict:
        return {"status": "OK", "service": "fake bank"}

    return app


@pytest.fixture
def bank_app():
    return create_bank_app()


@pytest.fixture
async def http(bank_app):
    executor = HttpxExecutor("http://test", timeout=5.0, transport=ASGITransport(app=bank_app))
    yield executor
    await executor.aclose()


@pytest.fixture
def aggregator() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def api(http: HttpxExecutor, aggregator: MetricsAggregator) -> BankApi:
    return BankApi(http, aggregator)


@pytest.fixture
def make_identity(bank_app: FastAPI):
    """Create a user, token and account straight in the fake bank's state."""

    def make(name: str, balance: float = 100.0) -> Identity:
        user_id = str(uuid.uuid4())
        token = f"tok-{name}"
        account_id = f"acc-{name}"
        bank_app.state.users[name] = {"id": user_id, "password": "secret1"}
        bank_app.state.tokens[token] = user_id
        bank_app.state.accounts[account_id] = {"owner": user_id, "balance": balance}
        return Identity(id=user_id, username=name, password="secret1", token=token, account_id=account_id)

    return make


@pytest.fixture
def pool() -> IdentityPool:
    return IdentityPool()
