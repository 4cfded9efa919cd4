"""Prometheus collectors for rule evaluation."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Every finished evaluation, labelled with the rule that fired ("0" for none)
rule_evaluations_total = Counter(
    "agro_rule_evaluations_total",
    "Readings evaluated, by rule code that fired",
    ["rule_code"],
)

alerts_written_total = Counter(
    "agro_alerts_written_total",
    "Alert records persisted, by rule code",
    ["rule_code"],
)

# kind is "query", "write" or "malformed"
evaluation_failures_total = Counter(
    "agro_evaluation_failures_total",
    "Evaluations that could not complete",
    ["kind"],
)

evaluation_duration_seconds = Histogram(
    "agro_evaluation_duration_seconds",
    "Wall time spent evaluating one reading",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
