from loguru import logger

from app.core.config import Settings
from app.services.aggregator import Aggregator
from app.services.codec import FernetRecordCodec
from app.services.compliance import PolicyComplianceGate
from app.services.deployment import AssetDeployer, LogAssetDeployer, WebhookAssetDeployer
from app.services.escalation.channel import AlertChannel, LogAlertChannel, WebhookAlertChannel
from app.services.escalation.gate import EscalationGate
from app.services.escalation.store import EscalationStore, InMemoryEscalationStore, RedisEscalationStore
from app.services.persistence import RedisRecordSink
from app.services.pipeline.orchestrator import PipelineOrchestrator, RetryPolicy, StageDeadlines
from app.services.pipeline.service import ProfilePipelineService
from app.services.risk.scorer import RiskScorer
from app.services.sources.http import HttpSourceConnector
from app.services.sources.tracker import HttpVisitorTracker
from app.services.transform import HttpTransformStage, PassthroughTransformStage, TransformStage


def build_escalation_store(settings: Settings) -> EscalationStore:
    if settings.ESCALATION_STORE == "redis":
        return RedisEscalationStore(
            settings.REDIS_URL,
            settings.REDIS_ESCALATION_KEY,
            settings.ESCALATION_DEDUP_WINDOW_SECONDS,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return InMemoryEscalationStore(
        settings.ESCALATION_DEDUP_WINDOW_SECONDS, maxsize=settings.ESCALATION_MEMORY_MAX_ENTRIES
    )


def build_pipeline_service(settings: Settings) -> ProfilePipelineService:
    """
    Compose the pipeline from settings. Called once at process start.
    """
    sources = {
        name: HttpSourceConnector(name, url, timeout=settings.SOURCE_TIMEOUT_SECONDS)
        for name, url in settings.SOURCE_URLS.items()
    }
    if not sources:
        logger.warning("No SOURCE_URLS configured. Every operation will fail at COLLECT.")

    tracker = None
    if settings.VISITOR_TRACKER_URL:
        tracker = HttpVisitorTracker(settings.VISITOR_TRACKER_URL, timeout=settings.SOURCE_TIMEOUT_SECONDS)

    transform: TransformStage
    if settings.TRANSFORM_URL:
        transform = HttpTransformStage(settings.TRANSFORM_URL, timeout=settings.TRANSFORM_TIMEOUT_SECONDS)
    else:
        transform = PassthroughTransformStage()

    channel: AlertChannel
    if settings.ALERT_WEBHOOK_URL:
        channel = WebhookAlertChannel(settings.ALERT_WEBHOOK_URL, timeout=settings.ESCALATE_TIMEOUT_SECONDS)
    else:
        channel = LogAlertChannel()

    deployer: AssetDeployer
    if settings.DEPLOYMENT_WEBHOOK_URL:
        deployer = WebhookAssetDeployer(settings.DEPLOYMENT_WEBHOOK_URL, timeout=settings.ESCALATE_TIMEOUT_SECONDS)
    else:
        deployer = LogAssetDeployer()

    orchestrator = PipelineOrchestrator(
        aggregator=Aggregator(timeout=settings.SOURCE_TIMEOUT_SECONDS),
        transform=transform,
        scorer=RiskScorer(),
        codec=FernetRecordCodec(settings.RECORD_SECRET),
        compliance=PolicyComplianceGate(settings.COMPLIANCE_ALLOWED_OPERATIONS),
        sink=RedisRecordSink(
            settings.REDIS_URL,
            settings.REDIS_RECORD_KEY,
            ttl_seconds=settings.RECORD_TTL_SECONDS,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        ),
        gate=EscalationGate(
            build_escalation_store(settings), channel, delivery_timeout=settings.ESCALATE_TIMEOUT_SECONDS
        ),
        deployer=deployer,
        deadlines=StageDeadlines(
            transform=settings.TRANSFORM_TIMEOUT_SECONDS,
            secure=settings.SECURE_TIMEOUT_SECONDS,
            comply=settings.COMPLY_TIMEOUT_SECONDS,
            persist=settings.PERSIST_TIMEOUT_SECONDS,
            escalate=settings.ESCALATE_TIMEOUT_SECONDS,
        ),
        retry=RetryPolicy(
            max_retries=settings.PIPELINE_MAX_RETRIES,
            backoff_base=settings.RETRY_BACKOFF_BASE_SECONDS,
            backoff_max=settings.RETRY_BACKOFF_MAX_SECONDS,
        ),
    )
    logger.info(
        f"Pipeline ready with {len(sources)} sources, {type(transform).__name__}, "
        f"{type(channel).__name__}, dedup window {settings.ESCALATION_DEDUP_WINDOW_SECONDS}s"
    )
    return ProfilePipelineService(orchestrator, sources, tracker)
