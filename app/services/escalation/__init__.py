from app.services.escalation.channel import AlertChannel, LogAlertChannel, WebhookAlertChannel
from app.services.escalation.gate import EscalationGate
from app.services.escalation.store import EscalationStore, InMemoryEscalationStore, RedisEscalationStore

__all__ = [
    "AlertChannel",
    "LogAlertChannel",
    "WebhookAlertChannel",
    "EscalationGate",
    "EscalationStore",
    "InMemoryEscalationStore",
    "RedisEscalationStore",
]
