from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI

from bank_loadgen.client import HttpxExecutor
from bank_loadgen.config import Settings
from bank_loadgen.models import OperationType
from bank_loadgen.profiles import Profile, Scenario, Stage
from bank_loadgen.runner import THRESHOLDS_FAILED_EXIT_CODE, RunSummary, main, run_profile
from bank_loadgen.thresholds import Verdict

NO_THINK = {op: (0.0, 0.01) for op in OperationType}
SETTINGS = Settings(seed=7, provision_delay=0.0, tick_interval=0.01)


def _profile(thresholds: dict[str, list[str]]) -> Profile:
    return Profile(
        name="mini",
        provision_count=3,
        scenarios=[
            Scenario(
                name="banking",
                workload={
                    OperationType.LIST_ACCOUNTS: 0.3,
                    OperationType.TRANSFER: 0.3,
                    OperationType.PAYMENT: 0.4,
                },
                stages=[Stage(duration=0.2, target=3), Stage(duration=0.1, target=0)],
                amount_range=(1.0, 5.0),
                think_time=NO_THINK,
            ),
            Scenario(
                name="signups",
                workload={OperationType.REGISTER: 1},
                stages=[Stage(duration=0.2, target=1, constant=True)],
                start_time=0.05,
                think_time=NO_THINK,
            ),
        ],
        thresholds=thresholds,
    )


async def test_run_profile_passes(http: HttpxExecutor, bank_app: FastAPI) -> None:
    profile = _profile({"http_req_failed": ["rate<0.01"], "http_req_duration": ["p(95)<5000"]})
    verdict, summary = await run_profile(SETTINGS, profile, http)
    assert verdict.passed
    assert summary.passed
    assert summary.identities >= 3
    assert summary.metrics["http_reqs"]["count"] > 0
    assert summary.metrics["iterations"]["count"] > 0
    assert bank_app.state.transactions
    assert summary.violations == []


async def test_run_profile_reports_crossed_thresholds(http: HttpxExecutor) -> None:
    profile = _profile({"http_reqs": ["rate>1000000"]})
    verdict, summary = await run_profile(SETTINGS, profile, http)
    assert not verdict.passed
    assert summary.violations == ["http_reqs rate>1e+06"]


async def test_run_profile_survives_dead_target(http: HttpxExecutor, bank_app: FastAPI) -> None:
    bank_app.state.failing.update({("POST", "/register"), ("GET", "/health")})
    profile = _profile({"http_req_failed": ["rate<0.5"]})
    verdict, summary = await run_profile(SETTINGS, profile, http)
    assert summary.identities == 0
    assert not verdict.passed
    assert not bank_app.state.transactions


@pytest.mark.parametrize(
    ("metric", "expression"),
    [
        ("http_req_duration", "p95 below 500"),
        ("http_req_duration", "foo<1"),
        ("http_req_duration", "p(150)<1"),
        ("http_req_duration", "rate<0.1"),
        ("vus", "rate<1"),
    ],
)
async def test_bad_threshold_fails_before_traffic(
    http: HttpxExecutor, bank_app: FastAPI, metric: str, expression: str
) -> None:
    with pytest.raises(ValueError):
        await run_profile(SETTINGS, _profile({metric: [expression]}), http)
    assert bank_app.state.calls == []


def _summary(passed: bool) -> RunSummary:
    return RunSummary(
        profile="smoke",
        passed=passed,
        duration_seconds=1.0,
        identities=0,
        metrics={},
        thresholds={},
        violations=[] if passed else ["http_req_failed rate<0.01"],
    )


@patch("bank_loadgen.runner.run_profile", new_callable=AsyncMock)
def test_main_exits_with_threshold_code(mock_run, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROFILE", "smoke")
    mock_run.return_value = (Verdict(passed=False), _summary(False))
    with pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == THRESHOLDS_FAILED_EXIT_CODE


@patch("bank_loadgen.runner.run_profile", new_callable=AsyncMock)
def test_main_writes_summary(mock_run, monkeypatch: pytest.MonkeyPatch, tmp_path: pytest.TempPathFactory) -> None:
    path = tmp_path / "summary.json"
    monkeypatch.setenv("PROFILE", "smoke")
    monkeypatch.setenv("SUMMARY_PATH", str(path))
    mock_run.return_value = (Verdict(passed=True), _summary(True))
    main()
    assert RunSummary.model_validate_json(path.read_text()).passed
