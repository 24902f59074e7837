"""
Shared Prometheus metrics registry.

The alarm evaluator increments these counters/gauges.
Use prometheus_client.generate_latest() in the service /metrics handler.
"""

from prometheus_client import Counter, Gauge, Histogram

alarm_rules_evaluated_total = Counter(
    "alarm_evaluator_rules_evaluated_total",
    "Total rule evaluations",
    ["tenant_id", "rule"],
)

alarm_rule_errors_total = Counter(
    "alarm_evaluator_rule_errors_total",
    "Total rule evaluations that raised",
    ["tenant_id", "rule"],
)

alarm_events_created_total = Counter(
    "alarm_evaluator_alarm_events_created_total",
    "Total alarm events persisted",
    ["tenant_id", "event_type"],
)

alarm_events_suppressed_total = Counter(
    "alarm_evaluator_alarm_events_suppressed_total",
    "Alarm candidates suppressed because a recent active alarm exists",
    ["tenant_id", "event_type"],
)

alarm_persist_errors_total = Counter(
    "alarm_evaluator_persist_errors_total",
    "Failed alarm writes (durable store or active-alarm cache)",
    ["tenant_id", "target"],  # store | cache
)

alarm_pass_errors_total = Counter(
    "alarm_evaluator_pass_errors_total",
    "Evaluation passes or batches that failed",
    ["tenant_id", "stage"],  # listing | batch | entity
)

alarm_entities_evaluated = Gauge(
    "alarm_evaluator_entities_evaluated",
    "Entities considered in the last evaluation pass",
    ["tenant_id"],
)

alarm_pass_duration_seconds = Histogram(
    "alarm_evaluator_pass_duration_seconds",
    "Duration of one evaluation pass in seconds",
    ["tenant_id"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)
