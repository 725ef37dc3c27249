import operator
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from botload.aggregator import (
    BUILTIN_METRICS,
    MetricKind,
    MetricSnapshot,
    MetricsSnapshot,
    base_metric_name,
)
from botload.errors import ConfigurationError

_EXPRESSION = re.compile(
    r"^\s*(?P<stat>avg|min|max|med|count|rate|value|p\(\s*\d+(?:\.\d+)?\s*\)|p\d+(?:\.\d+)?)"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<number>-?\d+(?:\.\d+)?)\s*(?P<unit>ms|s|m)?\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

# durations are recorded in milliseconds
_UNIT_MS = {None: 1.0, "ms": 1.0, "s": 1000.0, "m": 60_000.0}

_STATS_BY_KIND: dict[MetricKind, set[str]] = {
    MetricKind.COUNTER: {"count"},
    MetricKind.RATE: {"rate", "count"},
    MetricKind.TREND: {"avg", "min", "max", "med", "count", "p"},
    MetricKind.GAUGE: {"value", "min", "max"},
}


# tag-filtered submetrics the engine records, by base metric
_SUBMETRIC_TAGS: dict[str, set[str]] = {"checks": {"check"}}


def _check_submetric(name: str) -> None:
    base = base_metric_name(name)
    if base == name:
        return
    tag = name[len(base) + 1 :].split(":", 1)[0]
    if tag not in _SUBMETRIC_TAGS.get(base, set()):
        raise ConfigurationError(f"threshold on {name!r} can never be evaluated, {base} is not recorded per {tag!r}")


class ThresholdSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str = Field(min_length=1)
    expression: str = Field(min_length=1)
    abort_on_fail: bool = False


@dataclass(frozen=True)
class Predicate:
    stat: str
    op: str
    bound: float
    percentile: float | None = None

    def observe(self, metric: MetricSnapshot) -> float:
        if self.percentile is not None:
            return metric.percentile(self.percentile)
        if self.stat == "count" and metric.kind is MetricKind.COUNTER:
            return metric.total
        return float(getattr(metric, self.stat))

    def holds(self, observed: float) -> bool:
        return _OPERATORS[self.op](observed, self.bound)


def parse_expression(expression: str) -> Predicate:
    match = _EXPRESSION.match(expression)
    if match is None:
        raise ConfigurationError(f"invalid threshold expression {expression!r}")
    stat = match.group("stat").replace(" ", "")
    bound = float(match.group("number")) * _UNIT_MS[match.group("unit")]
    if stat.startswith("p"):
        pct = float(stat.strip("p()"))
        if not 0 <= pct <= 100:
            raise ConfigurationError(f"percentile out of range in {expression!r}")
        return Predicate("p", match.group("op"), bound, pct)
    return Predicate(stat, match.group("op"), bound)


@dataclass(frozen=True)
class ThresholdResult:
    metric: str
    expression: str
    abort_on_fail: bool
    passed: bool
    observed: float | None

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "expression": self.expression,
            "abort_on_fail": self.abort_on_fail,
            "passed": self.passed,
            "observed": self.observed,
        }


class ThresholdEvaluator:
    def __init__(self, specs: Iterable[ThresholdSpec], kinds: Mapping[str, MetricKind] | None = None) -> None:
        kinds = dict(BUILTIN_METRICS) if kinds is None else dict(kinds)
        self._compiled: list[tuple[ThresholdSpec, Predicate]] = []
        for spec in specs:
            predicate = parse_expression(spec.expression)
            kind = kinds.get(spec.metric)
            if kind is None:
                _check_submetric(spec.metric)
                kind = kinds.get(base_metric_name(spec.metric))
            if kind is None:
                raise ConfigurationError(f"threshold references unknown metric {spec.metric!r}")
            if predicate.stat not in _STATS_BY_KIND[kind]:
                raise ConfigurationError(
                    f"threshold {spec.expression!r} uses {predicate.stat!r}, which a {kind} metric does not provide"
                )
            self._compiled.append((spec, predicate))

    @property
    def specs(self) -> list[ThresholdSpec]:
        return [spec for spec, _ in self._compiled]

    def evaluate(self, snapshot: MetricsSnapshot) -> list[ThresholdResult]:
        results = []
        for spec, predicate in self._compiled:
            metric = snapshot.get(spec.metric)
            if metric is None or metric.count == 0:
                results.append(ThresholdResult(spec.metric, spec.expression, spec.abort_on_fail, True, None))
                continue
            observed = predicate.observe(metric)
            results.append(
                ThresholdResult(spec.metric, spec.expression, spec.abort_on_fail, predicate.holds(observed), observed)
            )
        return results


def first_abort(results: Iterable[ThresholdResult]) -> ThresholdResult | None:
    for result in results:
        if result.abort_on_fail and not result.passed:
            return result
    return None


def thresholds_from_mapping(mapping: Mapping[str, Iterable[str | Mapping]]) -> list[ThresholdSpec]:
    """Flatten the k6 ``{"metric": ["rate<0.01", {"threshold": ..., "abortOnFail": true}]}`` form."""
    specs = []
    for metric, entries in mapping.items():
        if isinstance(entries, str | Mapping):
            entries = [entries]
        for entry in entries:
            if isinstance(entry, str):
                specs.append(ThresholdSpec(metric=metric, expression=entry))
            else:
                specs.append(
                    ThresholdSpec(
                        metric=metric,
                        expression=entry["threshold"],
                        abort_on_fail=bool(entry.get("abortOnFail", False)),
                    )
                )
    return specs


def parse_threshold_option(text: str, abort_on_fail: bool = False) -> ThresholdSpec:
    """Parse ``metric:expression`` as given on the command line."""
    metric, sep, expression = text.rpartition(":")
    if not sep or not metric:
        raise ConfigurationError(f"threshold {text!r} must look like 'metric:expression'")
    return ThresholdSpec(metric=metric.strip(), expression=expression.strip(), abort_on_fail=abort_on_fail)
