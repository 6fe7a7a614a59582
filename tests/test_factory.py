from app.core.config import Settings
from app.services.escalation import InMemoryEscalationStore, LogAlertChannel, RedisEscalationStore, WebhookAlertChannel
from app.services.pipeline import build_pipeline_service
from app.services.pipeline.factory import build_escalation_store
from app.services.sources import HttpSourceConnector, HttpVisitorTracker
from app.services.transform import HttpTransformStage, PassthroughTransformStage


def test_defaults_wire_local_collaborators():
    service = build_pipeline_service(Settings(SOURCE_URLS={}))

    assert service.sources == {}
    assert service.tracker is None
    assert isinstance(service.orchestrator.transform, PassthroughTransformStage)
    assert isinstance(service.orchestrator.gate.channel, LogAlertChannel)
    assert isinstance(service.orchestrator.gate.store, InMemoryEscalationStore)


def test_configured_endpoints_are_wired():
    settings = Settings(
        SOURCE_URLS={"social": "https://social.test/{identifier}", "web": "https://web.test/?q={identifier}"},
        VISITOR_TRACKER_URL="https://tracker.test/{identifier}",
        TRANSFORM_URL="https://model.test/score",
        ALERT_WEBHOOK_URL="https://alerts.test/hook",
        SOURCE_TIMEOUT_SECONDS=3.0,
        PIPELINE_MAX_RETRIES=0,
    )

    service = build_pipeline_service(settings)

    assert set(service.sources) == {"social", "web"}
    assert all(isinstance(s, HttpSourceConnector) for s in service.sources.values())
    assert isinstance(service.tracker, HttpVisitorTracker)
    assert isinstance(service.orchestrator.transform, HttpTransformStage)
    assert isinstance(service.orchestrator.gate.channel, WebhookAlertChannel)
    assert service.orchestrator.aggregator.timeout == 3.0
    assert service.orchestrator.retry.max_retries == 0


def test_redis_escalation_store_is_selectable():
    store = build_escalation_store(Settings(ESCALATION_STORE="redis", ESCALATION_DEDUP_WINDOW_SECONDS=120))

    assert isinstance(store, RedisEscalationStore)
    assert store.window_seconds == 120


def test_memory_escalation_store_capacity_is_configurable():
    store = build_escalation_store(Settings(ESCALATION_MEMORY_MAX_ENTRIES=5, ESCALATION_DEDUP_WINDOW_SECONDS=120))

    assert isinstance(store, InMemoryEscalationStore)
    assert store._records.maxsize == 5
    assert store.window_seconds == 120
