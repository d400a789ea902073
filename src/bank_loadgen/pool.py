import random
import threading
from dataclasses import dataclass, fields, replace

from bank_loadgen.metrics import POOL_SIZE
from bank_loadgen.models import Credentials


@dataclass(frozen=True)
class Identity:
    id: str
    username: str
    password: str
    token: str
    account_id: str

    def __post_init__(self) -> None:
        missing = [f.name for f in fields(self) if not getattr(self, f.name)]
        if missing:
            raise ValueError(f"identity is missing {', '.join(missing)}")

    def credentials(self) -> Credentials:
        return Credentials(name=self.username, password=self.password)

    def with_account(self, token: str, account_id: str) -> "Identity":
        return replace(self, token=token, account_id=account_id)


class IdentityPool:
    """Grow-only set of identities shared by every virtual user.

    Entries are immutable and complete before they are appended, so a reader
    holding the lock only ever sees whole identities. Account ids are unique.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[Identity] = []
        self._positions: dict[str, int] = {}

    def add(self, identity: Identity) -> bool:
        with self._lock:
            if identity.account_id in self._positions:
                return False
            self._positions[identity.account_id] = len(self._items)
            self._items.append(identity)
            size = len(self._items)
        POOL_SIZE.set(size)
        return True

    def random_pick(self, rng: random.Random) -> Identity | None:
        with self._lock:
            if not self._items:
                return None
            return self._items[rng.randrange(len(self._items))]

    def pick_other(self, identity: Identity, rng: random.Random) -> Identity | None:
        """Uniform pick among identities whose account differs from ``identity``'s."""
        with self._lock:
            size = len(self._items)
            own = self._positions.get(identity.account_id)
            if own is None:
                return self._items[rng.randrange(size)] if size else None
            if size < 2:
                return None
            # skip over the source slot
            index = rng.randrange(size - 1)
            return self._items[index + 1 if index >= own else index]

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.size()

    def snapshot(self) -> list[Identity]:
        with self._lock:
            return list(self._items)
