import pytest

from bank_loadgen.aggregator import MetricsAggregator, Sample
from bank_loadgen.thresholds import ThresholdRule, evaluate, parse_thresholds


def _durations(values: list[float]) -> MetricsAggregator:
    agg = MetricsAggregator()
    for value in values:
        agg.record(Sample("http_req_duration", value))
    return agg


def test_parse_percentile_rule() -> None:
    rule = ThresholdRule.parse("http_req_duration", "p(95)<500")
    assert rule.metric_name == "http_req_duration"
    assert rule.aggregator == "p(95)"
    assert rule.comparator == "<"
    assert rule.bound == 500.0


def test_parse_rate_rule_with_spaces() -> None:
    rule = ThresholdRule.parse("http_reqs", " rate > 100 ")
    assert (rule.aggregator, rule.comparator, rule.bound) == ("rate", ">", 100.0)


def test_parse_tagged_metric() -> None:
    rule = ThresholdRule.parse("http_req_duration{operation:transfer}", "p(99)<=1000")
    assert rule.tags == (("operation", "transfer"),)
    assert rule.describe() == "http_req_duration{operation:transfer} p(99)<=1000"


@pytest.mark.parametrize(
    ("metric", "expression"),
    [
        ("http_req_duration", "p95<500"),
        ("http_req_duration", "rate<<1"),
        ("http_req_duration", "avg"),
        ("http_req_duration", "p(95)<fast"),
        ("http_req_duration", "foo<1"),
        ("http_req_duration", "p(150)<1"),
        ("http_req_duration", "rate<0.1"),
        ("http_req_failed", "p(95)<1"),
        ("http_reqs", "avg<1"),
        ("vus", "rate<1"),
    ],
)
def test_parse_rejects_bad_expressions(metric: str, expression: str) -> None:
    with pytest.raises(ValueError):
        ThresholdRule.parse(metric, expression)


@pytest.mark.parametrize(
    ("metric", "expression"),
    [
        ("http_req_duration", "p(100)<1"),
        ("http_req_duration", "count>0"),
        ("http_req_failed", "count>0"),
        ("http_reqs", "count>0"),
        ("vus", "max<=10"),
        ("vus", "value==0"),
        ("custom_trend", "med<5"),
    ],
)
def test_parse_accepts_aggregators_fitting_the_metric(metric: str, expression: str) -> None:
    assert ThresholdRule.parse(metric, expression).metric_name == metric


def test_p95_above_bound_fails() -> None:
    agg = _durations([100.0] * 90 + [900.0] * 10)
    rule = ThresholdRule.parse("http_req_duration", "p(95)<500")
    verdict = evaluate(agg, [rule])
    assert not verdict.passed
    assert verdict.violations == [rule]
    assert verdict.observed["http_req_duration p(95)<500"] == 900.0


def test_p95_strictly_below_bound_passes() -> None:
    agg = _durations([100.0] * 96 + [900.0] * 4)
    verdict = evaluate(agg, parse_thresholds({"http_req_duration": ["p(95)<500"]}))
    assert verdict.passed
    assert verdict.violations == []


def test_p95_equal_to_bound_fails_strict_comparison() -> None:
    agg = _durations([500.0] * 10)
    assert not evaluate(agg, [ThresholdRule.parse("http_req_duration", "p(95)<500")]).passed


def test_every_rule_must_pass() -> None:
    agg = _durations([10.0])
    agg.record(Sample("http_req_failed", 1.0))
    verdict = evaluate(
        agg,
        parse_thresholds({"http_req_duration": ["p(95)<500"], "http_req_failed": ["rate<0.01"]}),
    )
    assert not verdict.passed
    assert [rule.metric_name for rule in verdict.violations] == ["http_req_failed"]


def test_no_rules_passes() -> None:
    assert evaluate(MetricsAggregator(), []).passed
