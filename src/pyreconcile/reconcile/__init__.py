"""Reconciliation of reported device state against desired state."""

from pyreconcile.reconcile.engine import ReconciliationEngine, log_device_events
from pyreconcile.reconcile.rules import (
    EDISON_RULE,
    HUZZAH_RULE,
    RPI2_RULE,
    AttributeCheck,
    Correction,
    DeviceRule,
    Mismatch,
    ReconciliationRule,
    RuleRegistry,
    led_command,
    switch_command,
    text_command,
    values_match,
)

__all__ = [
    "EDISON_RULE",
    "HUZZAH_RULE",
    "RPI2_RULE",
    "AttributeCheck",
    "Correction",
    "DeviceRule",
    "Mismatch",
    "ReconciliationEngine",
    "ReconciliationRule",
    "RuleRegistry",
    "led_command",
    "log_device_events",
    "switch_command",
    "text_command",
    "values_match",
]
