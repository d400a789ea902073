import asyncio
import logging
import random
import sys
from functools import partial
from pathlib import Path

from prometheus_client import start_http_server
from pydantic import BaseModel

from bank_loadgen.aggregator import MetricsAggregator
from bank_loadgen.api import BankApi
from bank_loadgen.client import HttpExecutor, HttpxExecutor
from bank_loadgen.config import Settings
from bank_loadgen.logging_setup import configure_logging
from bank_loadgen.operations import OperationExecutor
from bank_loadgen.pool import IdentityPool
from bank_loadgen.profiles import Profile, load_profile
from bank_loadgen.provisioner import SetupProvisioner
from bank_loadgen.scheduler import ScenarioScheduler
from bank_loadgen.selector import WorkflowSelector
from bank_loadgen.thresholds import Verdict, evaluate, parse_thresholds

logger = logging.getLogger(__name__)

# Same exit code k6 uses for crossed thresholds.
THRESHOLDS_FAILED_EXIT_CODE = 99


class RunSummary(BaseModel):
    profile: str
    passed: bool
    duration_seconds: float
    identities: int
    metrics: dict[str, dict[str, float]]
    thresholds: dict[str, float]
    violations: list[str]


async def run_profile(
    settings: Settings,
    profile: Profile,
    http: HttpExecutor | None = None,
) -> tuple[Verdict, RunSummary]:
    rules = parse_thresholds(profile.thresholds)
    aggregator = MetricsAggregator()
    owned = HttpxExecutor(settings.base_url, settings.http_timeout) if http is None else None
    api = BankApi(http or owned, aggregator)
    pool = IdentityPool()
    try:
        if profile.provision_count:
            provisioner = SetupProvisioner(
                api,
                pool,
                username_prefix=profile.username_prefix,
                delay=settings.provision_delay,
                rng=random.Random(settings.seed),
            )
            await provisioner.provision(profile.provision_count)
        selector = WorkflowSelector()
        scheduler = ScenarioScheduler(settings.tick_interval, settings.seed, aggregator)
        for scenario in profile.scenarios:
            executor = OperationExecutor(api, pool, scenario, aggregator, profile.username_prefix)
            scheduler.add(scenario, partial(executor.run_iteration, selector))
        await scheduler.run()
    finally:
        aggregator.finish()
        if owned is not None:
            await owned.aclose()
    verdict = evaluate(aggregator, rules)
    summary = RunSummary(
        profile=profile.name,
        passed=verdict.passed,
        duration_seconds=aggregator.elapsed(),
        identities=pool.size(),
        metrics=aggregator.summary(),
        thresholds=verdict.observed,
        violations=[rule.describe() for rule in verdict.violations],
    )
    return verdict, summary


def log_summary(summary: RunSummary) -> None:
    logger.info(
        "Profile %s finished in %.1fs with %d identities",
        summary.profile,
        summary.duration_seconds,
        summary.identities,
    )
    for metric, stats in summary.metrics.items():
        logger.info("%s: %s", metric, " ".join(f"{name}={value:.2f}" for name, value in stats.items()))
    for rule, observed in summary.thresholds.items():
        status = "FAIL" if rule in summary.violations else "ok"
        logger.info("threshold %s observed=%.4f %s", rule, observed, status)


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    profile = load_profile(settings)
    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("Serving Prometheus metrics on port %d", settings.metrics_port)
    logger.info("Running profile %s against %s", profile.name, settings.base_url)
    verdict, summary = asyncio.run(run_profile(settings, profile))
    log_summary(summary)
    if settings.summary_path:
        Path(settings.summary_path).write_text(summary.model_dump_json(indent=2))
    if not verdict.passed:
        logger.error("Thresholds crossed: %s", ", ".join(summary.violations))
        sys.exit(THRESHOLDS_FAILED_EXIT_CODE)
