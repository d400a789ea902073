import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from bank_loadgen.config import Settings
from bank_loadgen.models import OperationType

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

DEFAULT_THINK_TIME: dict[OperationType, tuple[float, float]] = {
    OperationType.REGISTER: (2.0, 5.0),
    OperationType.LOGIN: (1.0, 3.0),
    OperationType.CREATE_ACCOUNT: (1.0, 3.0),
    OperationType.LIST_ACCOUNTS: (0.5, 1.5),
    OperationType.TRANSFER: (1.0, 3.0),
    OperationType.PAYMENT: (1.0, 3.0),
    OperationType.HEALTH_CHECK: (0.5, 1.5),
}


def parse_duration(value: str | float | int) -> float:
    """Seconds from a number or a k6 duration string such as ``"1m30s"``."""
    if isinstance(value, int | float):
        return float(value)
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)


class Stage(BaseModel, frozen=True):
    duration: float = Field(ge=0)
    target: int = Field(ge=0)
    constant: bool = False

    @field_validator("duration", mode="before")
    @classmethod
    def _duration(cls, v: str | float) -> float:
        return parse_duration(v)


class Scenario(BaseModel, frozen=True):
    name: str
    workload: dict[OperationType, float]
    stages: list[Stage] = Field(min_length=1)
    start_time: float = 0.0
    start_vus: int = Field(default=0, ge=0)
    amount_range: tuple[float, float] = (1.0, 100.0)
    think_time: dict[OperationType, tuple[float, float]] = Field(default_factory=dict)

    @field_validator("start_time", mode="before")
    @classmethod
    def _start_time(cls, v: str | float) -> float:
        return parse_duration(v)

    @model_validator(mode="after")
    def _check(self) -> "Scenario":
        if any(w < 0 for w in self.workload.values()) or not any(self.workload.values()):
            raise ValueError(f"scenario {self.name!r} needs non-negative weights with at least one above zero")
        low, high = self.amount_range
        if low <= 0 or high < low:
            raise ValueError(f"scenario {self.name!r} has invalid amount range {self.amount_range}")
        return self

    @property
    def duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def think_range(self, operation: OperationType) -> tuple[float, float]:
        return self.think_time.get(operation) or DEFAULT_THINK_TIME[operation]


class Profile(BaseModel):
    name: str
    provision_count: int = Field(default=0, ge=0)
    username_prefix: str = "loaduser"
    scenarios: list[Scenario] = Field(min_length=1)
    thresholds: dict[str, list[str]] = Field(default_factory=dict)


def _constant(seconds: float) -> dict[OperationType, tuple[float, float]]:
    return {op: (seconds, seconds) for op in OperationType}


PROFILES: dict[str, Profile] = {
    "smoke": Profile(
        name="smoke",
        scenarios=[
            Scenario(
                name="smoke",
                workload={
                    OperationType.HEALTH_CHECK: 0.2,
                    OperationType.REGISTER: 0.4,
                    OperationType.LIST_ACCOUNTS: 0.4,
                },
                stages=[Stage(duration="30s", target=1), Stage(duration="30s", target=1)],
                think_time=_constant(1.0),
            )
        ],
        thresholds={
            "http_req_duration": ["p(95)<500"],
            "http_req_failed": ["rate<0.01"],
        },
    ),
    "load": Profile(
        name="load",
        provision_count=20,
        username_prefix="loaduser",
        scenarios=[
            Scenario(
                name="load",
                workload={OperationType.LIST_ACCOUNTS: 0.5, OperationType.TRANSFER: 0.5},
                stages=[
                    Stage(duration="2m", target=10),
                    Stage(duration="5m", target=10),
                    Stage(duration="2m", target=20),
                    Stage(duration="5m", target=50),
                    Stage(duration="2m", target=30),
                    Stage(duration="2m", target=0),
                ],
                amount_range=(10.0, 60.0),
            )
        ],
        thresholds={
            "http_req_duration": ["p(95)<800"],
            "http_req_failed": ["rate<0.05"],
            "http_reqs": ["rate>50"],
        },
    ),
    "spike": Profile(
        name="spike",
        provision_count=30,
        username_prefix="spikeuser",
        scenarios=[
            Scenario(
                name="spike",
                workload={
                    OperationType.HEALTH_CHECK: 0.34,
                    OperationType.LIST_ACCOUNTS: 0.33,
                    OperationType.TRANSFER: 0.33,
                },
                stages=[
                    Stage(duration="10s", target=10),
                    Stage(duration="30s", target=200),
                    Stage(duration="1m", target=300),
                    Stage(duration="10s", target=10),
                    Stage(duration="30s", target=10),
                    Stage(duration="10s", target=0),
                ],
                amount_range=(5.0, 25.0),
                think_time=_constant(0.3),
            )
        ],
        thresholds={
            "http_req_duration": ["p(99)<3000"],
            "http_req_failed": ["rate<0.20"],
        },
    ),
    "full": Profile(
        name="full",
        username_prefix="fulluser",
        scenarios=[
            Scenario(
                name="user_registration",
                workload={OperationType.REGISTER: 1.0},
                stages=[
                    Stage(duration="1m", target=3),
                    Stage(duration="3m", target=5),
                    Stage(duration="1m", target=0),
                ],
            ),
            Scenario(
                name="banking_operations",
                workload={
                    OperationType.LIST_ACCOUNTS: 0.30,
                    OperationType.TRANSFER: 0.28,
                    OperationType.PAYMENT: 0.42,
                },
                stages=[
                    Stage(duration="2m", target=10),
                    Stage(duration="5m", target=45),
                    Stage(duration="2m", target=10),
                    Stage(duration="2m", target=0),
                ],
                start_time="1m",
                amount_range=(10.0, 40.0),
            ),
            Scenario(
                name="read_heavy",
                workload={OperationType.HEALTH_CHECK: 0.5, OperationType.LIST_ACCOUNTS: 0.5},
                stages=[Stage(duration="10m", target=15, constant=True)],
                start_time="2m",
            ),
        ],
        thresholds={
            "http_req_duration": ["p(95)<1000"],
            "http_req_failed": ["rate<0.05"],
        },
    ),
}


def load_profile(settings: Settings) -> Profile:
    if settings.profile_path:
        profile = Profile.model_validate_json(Path(settings.profile_path).read_text())
    else:
        try:
            profile = PROFILES[settings.profile]
        except KeyError:
            raise ValueError(f"unknown profile {settings.profile!r}, expected one of {sorted(PROFILES)}") from None
    if settings.provision_count is not None:
        profile = profile.model_copy(update={"provision_count": settings.provision_count})
    return profile
