"""Admin module — event bus and audit trail."""

from labflow.admin.audit import audit_trail
from labflow.admin.events import event_bus

__all__ = ["audit_trail", "event_bus"]
