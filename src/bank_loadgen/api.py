import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from bank_loadgen.aggregator import MetricsSink
from bank_loadgen.client import HttpExecutor, HttpResponse
from bank_loadgen.metrics import record_http_call
from bank_loadgen.models import (
    AccountListResponse,
    AccountResponse,
    Credentials,
    HealthResponse,
    LoginResponse,
    OperationType,
    RegisterResponse,
    TransactionRequest,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Outcome(StrEnum):
    OK = "ok"
    REJECTED = "rejected"
    TRANSPORT_FAILURE = "transport_failure"
    UNEXPECTED_STATUS = "unexpected_status"
    DECODE_FAILURE = "decode_failure"


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    operation: OperationType
    response: HttpResponse
    outcome: Outcome
    data: T | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.OK, Outcome.REJECTED)


class BankApi:
    """Typed calls against the banking API.

    Every call is recorded on the metrics sink before it is returned. 400 on
    ``/transactions`` is a business-rule rejection and counts as success;
    everywhere else only the endpoint's documented status does.
    """

    def __init__(self, http: HttpExecutor, sink: MetricsSink) -> None:
        self._http = http
        self._sink = sink

    async def register(self, credentials: Credentials) -> ApiResult[RegisterResponse]:
        response = await self._http.send("POST", "/register", json=credentials.model_dump())
        return self._finish(OperationType.REGISTER, response, 201, RegisterResponse)

    async def login(self, credentials: Credentials) -> ApiResult[LoginResponse]:
        response = await self._http.send("POST", "/login", json=credentials.model_dump())
        return self._finish(OperationType.LOGIN, response, 200, LoginResponse)

    async def create_account(self, token: str) -> ApiResult[AccountResponse]:
        response = await self._http.send("POST", "/accounts", json={}, token=token)
        return self._finish(OperationType.CREATE_ACCOUNT, response, 201, AccountResponse)

    async def list_accounts(self, token: str) -> ApiResult[AccountListResponse]:
        response = await self._http.send("GET", "/accounts", token=token)
        return self._finish(OperationType.LIST_ACCOUNTS, response, 200, AccountListResponse)

    async def create_transaction(self, request: TransactionRequest, token: str) -> ApiResult:
        operation = OperationType(request.type)
        response = await self._http.send("POST", "/transactions", json=request.model_dump(), token=token)
        if response.status == 400:
            return self._record(ApiResult(operation, response, Outcome.REJECTED))
        return self._finish(operation, response, 201, None)

    async def health(self) -> ApiResult[HealthResponse]:
        response = await self._http.send("GET", "/health")
        return self._finish(OperationType.HEALTH_CHECK, response, 200, HealthResponse)

    def _finish(
        self,
        operation: OperationType,
        response: HttpResponse,
        expected_status: int,
        schema: type[T] | None,
    ) -> ApiResult:
        if response.transport_failed:
            logger.debug("%s transport failure: %s", operation, response.error)
            return self._record(ApiResult(operation, response, Outcome.TRANSPORT_FAILURE))
        if response.status != expected_status:
            logger.debug("%s unexpected status %d", operation, response.status)
            return self._record(ApiResult(operation, response, Outcome.UNEXPECTED_STATUS))
        if schema is None:
            return self._record(ApiResult(operation, response, Outcome.OK))
        try:
            data = schema.model_validate_json(response.body)
        except ValidationError as e:
            logger.warning("%s response could not be decoded: %s", operation, e.errors(include_url=False))
            return self._record(ApiResult(operation, response, Outcome.DECODE_FAILURE))
        return self._record(ApiResult(operation, response, Outcome.OK, data))

    def _record(self, result: ApiResult) -> ApiResult:
        record_http_call(self._sink, result.operation, result.response.status, result.response.latency, result.ok)
        return result
