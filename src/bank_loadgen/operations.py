import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from bank_loadgen.aggregator import MetricsSink, Sample
from bank_loadgen.api import ApiResult, BankApi, Outcome
from bank_loadgen.metrics import ITERATIONS_TOTAL
from bank_loadgen.models import OperationType, TransactionRequest
from bank_loadgen.pool import IdentityPool
from bank_loadgen.profiles import Scenario
from bank_loadgen.provisioner import generate_credentials, materialize
from bank_loadgen.selector import WorkflowSelector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperationResult:
    type: OperationType
    latency: float
    http_status: int
    success: bool
    outcome: Outcome

    @classmethod
    def from_api(cls, result: ApiResult) -> "OperationResult":
        return cls(
            type=result.operation,
            latency=result.response.latency,
            http_status=result.response.status,
            success=result.ok,
            outcome=result.outcome,
        )


class OperationExecutor:
    """Runs one operation of a scenario's workload, then waits out its think time.

    Operations that need identities the pool cannot provide return None
    without touching the network. Chained calls (login after register,
    account creation after login) are recorded under their own operation
    type; the returned result describes the first call.
    """

    def __init__(
        self,
        api: BankApi,
        pool: IdentityPool,
        scenario: Scenario,
        sink: MetricsSink,
        username_prefix: str = "vuuser",
    ) -> None:
        self._api = api
        self._pool = pool
        self._scenario = scenario
        self._sink = sink
        self._prefix = username_prefix
        self._handlers: dict[OperationType, Callable[[random.Random], Awaitable[OperationResult | None]]] = {
            OperationType.REGISTER: self._register,
            OperationType.LOGIN: self._login,
            OperationType.CREATE_ACCOUNT: self._create_account,
            OperationType.LIST_ACCOUNTS: self._list_accounts,
            OperationType.TRANSFER: self._transfer,
            OperationType.PAYMENT: self._payment,
            OperationType.HEALTH_CHECK: self._health_check,
        }

    async def execute(self, operation: OperationType, rng: random.Random) -> OperationResult | None:
        result = await self._handlers[operation](rng)
        low, high = self._scenario.think_range(operation)
        await asyncio.sleep(rng.uniform(low, high))
        return result

    async def run_iteration(self, selector: WorkflowSelector, rng: random.Random) -> OperationResult | None:
        operation = selector.select(self._pool, self._scenario.workload, rng)
        result = await self.execute(operation, rng)
        self._sink.record(Sample("iterations", 1.0, {"scenario": self._scenario.name}))
        ITERATIONS_TOTAL.labels(scenario=self._scenario.name).inc()
        return result

    async def _register(self, rng: random.Random) -> OperationResult:
        credentials = generate_credentials(self._prefix, rng)
        registered = await self._api.register(credentials)
        if registered.ok:
            identity = await materialize(self._api, credentials, registered.data.user_id)
            if identity is not None:
                self._pool.add(identity)
        return OperationResult.from_api(registered)

    async def _login(self, rng: random.Random) -> OperationResult | None:
        known = self._pool.random_pick(rng)
        if known is None:
            return None
        credentials = known.credentials()
        login = await self._api.login(credentials)
        if login.ok:
            account = await self._api.create_account(login.data.token)
            if account.ok:
                self._pool.add(known.with_account(login.data.token, account.data.account_id))
        return OperationResult.from_api(login)

    async def _create_account(self, rng: random.Random) -> OperationResult | None:
        owner = self._pool.random_pick(rng)
        if owner is None:
            return None
        account = await self._api.create_account(owner.token)
        if account.ok:
            self._pool.add(owner.with_account(owner.token, account.data.account_id))
        return OperationResult.from_api(account)

    async def _list_accounts(self, rng: random.Random) -> OperationResult | None:
        owner = self._pool.random_pick(rng)
        if owner is None:
            return None
        return OperationResult.from_api(await self._api.list_accounts(owner.token))

    async def _transfer(self, rng: random.Random) -> OperationResult | None:
        return await self._transaction(OperationType.TRANSFER, rng)

    async def _payment(self, rng: random.Random) -> OperationResult | None:
        return await self._transaction(OperationType.PAYMENT, rng)

    async def _transaction(self, operation: OperationType, rng: random.Random) -> OperationResult | None:
        source = self._pool.random_pick(rng)
        if source is None:
            return None
        target = self._pool.pick_other(source, rng)
        if target is None:
            logger.debug("No counterparty for %s from %s, skipping", operation, source.account_id)
            return None
        low, high = self._scenario.amount_range
        request = TransactionRequest(
            from_account_id=source.account_id,
            to_account_id=target.account_id,
            amount=round(rng.uniform(low, high), 2),
            type=operation.value,
        )
        return OperationResult.from_api(await self._api.create_transaction(request, source.token))

    async def _health_check(self, rng: random.Random) -> OperationResult:
        return OperationResult.from_api(await self._api.health())
