"""Prometheus counters for appointment lifecycle events."""

from prometheus_client import Counter

appointments_created_total = Counter(
    "appointments_created_total",
    "Total number of appointments created",
)

appointments_rescheduled_total = Counter(
    "appointments_rescheduled_total",
    "Total number of appointments rescheduled",
)

appointments_cancelled_total = Counter(
    "appointments_cancelled_total",
    "Total number of appointments cancelled",
)

collaborator_failures_total = Counter(
    "collaborator_failures_total",
    "Post-commit calls to collaborating services that failed or timed out",
    ["service", "operation"],
)
