import asyncio
import logging
import random
import time

from bank_loadgen.api import BankApi
from bank_loadgen.models import Credentials
from bank_loadgen.pool import Identity, IdentityPool

logger = logging.getLogger(__name__)


def generate_credentials(prefix: str, rng: random.Random, slot: int = 0) -> Credentials:
    suffix = rng.randrange(100_000) + slot
    return Credentials(
        name=f"{prefix}_{int(time.time() * 1000)}_{rng.getrandbits(40):010x}",
        password=f"Pass{suffix}!@#",
    )


async def materialize(api: BankApi, credentials: Credentials, user_id: str) -> Identity | None:
    """Log in and open an account; returns the resulting identity or None if either step failed."""
    login = await api.login(credentials)
    if not login.ok:
        logger.warning("Login failed for %s (status %d)", credentials.name, login.response.status)
        return None
    account = await api.create_account(login.data.token)
    if not account.ok:
        logger.warning("Account creation failed for %s (status %d)", credentials.name, account.response.status)
        return None
    return Identity(
        id=user_id,
        username=credentials.name,
        password=credentials.password,
        token=login.data.token,
        account_id=account.data.account_id,
    )


class SetupProvisioner:
    def __init__(
        self,
        api: BankApi,
        pool: IdentityPool | None = None,
        username_prefix: str = "loaduser",
        delay: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        self._api = api
        self._pool = pool if pool is not None else IdentityPool()
        self._prefix = username_prefix
        self._delay = delay
        self._rng = rng or random.Random()

    async def provision(self, count: int) -> IdentityPool:
        logger.info("Provisioning %d identities", count)
        for slot in range(count):
            identity = await self._provision_slot(slot)
            if identity is not None:
                self._pool.add(identity)
            await asyncio.sleep(self._delay)
        logger.info("Provisioning complete: %d/%d identities ready", self._pool.size(), count)
        return self._pool

    async def _provision_slot(self, slot: int) -> Identity | None:
        credentials = generate_credentials(self._prefix, self._rng, slot)
        registered = await self._api.register(credentials)
        if not registered.ok:
            logger.warning("Skipping slot %d: register failed (status %d)", slot, registered.response.status)
            return None
        identity = await materialize(self._api, credentials, registered.data.user_id)
        if identity is None:
            logger.warning("Skipping slot %d: %s has no usable account", slot, credentials.name)
        return identity
