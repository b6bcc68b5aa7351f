"""Prometheus collectors shared across the service."""

from __future__ import annotations

from prometheus_client import Counter

GATE_DECISIONS = Counter(
    "backoffice_gate_decisions_total",
    "Suspension gate outcomes per request.",
    ["decision"],
)

ADMIN_COMMANDS = Counter(
    "backoffice_admin_commands_total",
    "Administrative command results.",
    ["command", "outcome"],
)

LOGIN_ATTEMPTS = Counter(
    "backoffice_login_attempts_total",
    "Login attempts by result.",
    ["result"],
)
