import logging
import operator
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, model_validator

from bank_loadgen.aggregator import BUILTIN_KINDS, MetricKind, MetricsAggregator, check_aggregator

logger = logging.getLogger(__name__)

_COMPARATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
}

_EXPRESSION = re.compile(
    r"^\s*(?P<aggregator>p\(\d+(?:\.\d+)?\)|[a-z]+)\s*(?P<comparator><=|>=|==|<|>)\s*(?P<bound>-?\d+(?:\.\d+)?)\s*$"
)
_METRIC = re.compile(r"^(?P<name>[A-Za-z_][\w]*)(?:\{(?P<tags>[^}]*)\})?$")


class ThresholdRule(BaseModel, frozen=True):
    metric_name: str
    aggregator: str
    comparator: Literal["<", "<=", ">", ">=", "=="]
    bound: float
    tags: tuple[tuple[str, str], ...] = ()

    @model_validator(mode="after")
    def aggregator_fits_metric(self) -> "ThresholdRule":
        check_aggregator(BUILTIN_KINDS.get(self.metric_name, MetricKind.TREND), self.aggregator)
        return self

    @classmethod
    def parse(cls, metric: str, expression: str) -> "ThresholdRule":
        """Build a rule from k6 syntax, e.g. ``parse("http_req_duration{operation:transfer}", "p(95)<500")``."""
        metric_match = _METRIC.match(metric.strip())
        if metric_match is None:
            raise ValueError(f"invalid threshold metric: {metric!r}")
        expr_match = _EXPRESSION.match(expression)
        if expr_match is None:
            raise ValueError(f"invalid threshold expression: {expression!r}")
        tags: list[tuple[str, str]] = []
        if metric_match["tags"]:
            for pair in metric_match["tags"].split(","):
                key, sep, value = pair.partition(":")
                if not sep:
                    raise ValueError(f"invalid tag filter {pair!r} in {metric!r}")
                tags.append((key.strip(), value.strip()))
        return cls(
            metric_name=metric_match["name"],
            aggregator=expr_match["aggregator"],
            comparator=expr_match["comparator"],
            bound=float(expr_match["bound"]),
            tags=tuple(tags),
        )

    def describe(self) -> str:
        selector = ",".join(f"{k}:{v}" for k, v in self.tags)
        metric = f"{self.metric_name}{{{selector}}}" if selector else self.metric_name
        return f"{metric} {self.aggregator}{self.comparator}{self.bound:g}"


@dataclass
class Verdict:
    passed: bool
    violations: list[ThresholdRule] = field(default_factory=list)
    observed: dict[str, float] = field(default_factory=dict)


def parse_thresholds(thresholds: Mapping[str, list[str]]) -> list[ThresholdRule]:
    return [ThresholdRule.parse(metric, expr) for metric, exprs in thresholds.items() for expr in exprs]


def evaluate(aggregator: MetricsAggregator, rules: list[ThresholdRule]) -> Verdict:
    verdict = Verdict(passed=True)
    for rule in rules:
        value = aggregator.aggregate(rule.metric_name, rule.aggregator, dict(rule.tags))
        verdict.observed[rule.describe()] = value
        if not _COMPARATORS[rule.comparator](value, rule.bound):
            logger.warning("Threshold crossed: %s (observed %.4f)", rule.describe(), value)
            verdict.violations.append(rule)
    verdict.passed = not verdict.violations
    return verdict
