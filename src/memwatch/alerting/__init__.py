"""
Alerting for the memwatch package.

This package contains the cooldown-gated alert manager, the remediation
actions it triggers, and the sinks alerts are delivered to.
"""

from .actions import ActionResult, RemediationActions
from .alert_manager import AlertManager, CooldownState
from .sinks import AlertSink, CallbackAlertSink, JsonlAlertSink, LoggingAlertSink

__all__ = [
    "ActionResult",
    "RemediationActions",
    "AlertManager",
    "CooldownState",
    "AlertSink",
    "CallbackAlertSink",
    "JsonlAlertSink",
    "LoggingAlertSink",
]
