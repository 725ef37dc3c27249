import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import click

from botload.aggregator import CounterSnapshot, GaugeSnapshot, MetricSnapshot, RateSnapshot, TrendSnapshot
from botload.controller import RunResult, RunStatus

logger = logging.getLogger(__name__)

TREND_STATS = ("avg", "min", "med", "max", "p(90)", "p(95)", "p(99)")
_NAME_WIDTH = 32


def _fmt(value: float) -> str:
    return f"{value:.2f}"


def _describe(metric: MetricSnapshot, duration: float) -> str:
    if isinstance(metric, TrendSnapshot):
        stats = metric.to_dict()
        return " ".join(f"{stat}={_fmt(stats[stat])}" for stat in TREND_STATS)
    if isinstance(metric, RateSnapshot):
        return f"{metric.rate * 100:.2f}% ✓ {metric.passes} ✗ {metric.fails}"
    if isinstance(metric, CounterSnapshot):
        return f"{metric.total:g} {metric.rate_per_second(duration):.2f}/s"
    if isinstance(metric, GaugeSnapshot):
        return f"{metric.value:g} min={metric.min:g} max={metric.max:g}"
    raise TypeError(f"unsupported metric snapshot {metric!r}")


def _mark(passed: bool, colors: bool) -> str:
    mark = "✓" if passed else "✗"
    if colors:
        return click.style(mark, fg="green" if passed else "red")
    return mark


def text_summary(result: RunResult, indent: str = "  ", colors: bool = False) -> str:
    lines = [
        f"{indent}scenario: {result.scenario}",
        f"{indent}status:   {result.status.value}",
        f"{indent}duration: {result.duration:.2f}s",
    ]
    if result.abort_reason is not None:
        reason = result.abort_reason
        lines.append(f"{indent}aborted:  {reason.metric} {reason.expression} (observed {reason.observed})")
    if result.error:
        lines.append(f"{indent}error:    {result.error}")
    if result.thresholds:
        lines.append("")
        for threshold in result.thresholds:
            observed = "no data" if threshold.observed is None else _fmt(threshold.observed)
            lines.append(
                f"{indent}{_mark(threshold.passed, colors)} {threshold.metric} {threshold.expression} (observed {observed})"
            )
    lines.append("")
    for name, metric in sorted(result.metrics.metrics.items()):
        label = f"{name} ".ljust(_NAME_WIDTH, ".")
        lines.append(f"{indent}{label}: {_describe(metric, result.duration)}")
    return "\n".join(lines)


def default_export_path(results_dir: str, scenario: str) -> Path:
    timestamp = datetime.now(UTC).isoformat().replace(":", "-").replace(".", "-")
    return Path(results_dir) / f"{scenario}-{timestamp}.json"


def export_json(result: RunResult, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), indent=2))
    logger.info("Wrote run summary to %s", path)
    return path


def exit_code(result: RunResult) -> int:
    if result.status is RunStatus.ABORTED_BY_ERROR:
        return 1
    if result.status is RunStatus.INTERRUPTED:
        return 130
    if result.status is RunStatus.ABORTED_BY_SLA or not result.thresholds_passed:
        return 99
    return 0
