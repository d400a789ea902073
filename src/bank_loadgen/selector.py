import random
from collections.abc import Mapping

from bank_loadgen.models import OperationType
from bank_loadgen.pool import IdentityPool

# Identities an operation needs in the pool before it can be picked.
MIN_IDENTITIES: dict[OperationType, int] = {
    OperationType.REGISTER: 0,
    OperationType.HEALTH_CHECK: 0,
    OperationType.LOGIN: 1,
    OperationType.CREATE_ACCOUNT: 1,
    OperationType.LIST_ACCOUNTS: 1,
    OperationType.TRANSFER: 2,
    OperationType.PAYMENT: 2,
}

FALLBACK = OperationType.HEALTH_CHECK


class WorkflowSelector:
    """Weighted random choice over the operations the pool can currently support."""

    def eligible(self, pool_size: int, weights: Mapping[OperationType, float]) -> dict[OperationType, float]:
        return {op: w for op, w in weights.items() if w > 0 and pool_size >= MIN_IDENTITIES[op]}

    def select(
        self,
        pool: IdentityPool,
        weights: Mapping[OperationType, float],
        rng: random.Random,
    ) -> OperationType:
        candidates = self.eligible(pool.size(), weights)
        if not candidates:
            return FALLBACK
        return rng.choices(list(candidates), weights=list(candidates.values()))[0]
