from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from app.core.errors import DeploymentError, ErrorKind, PipelineError, SourceError
from app.models.pipeline import RunStatus, Stage
from app.models.record import VideoMeta
from app.models.risk import DeploymentStatus, EscalationStatus, RiskCategory
from app.services.pipeline.service import OPERATIONS, ProfilePipelineService
from tests.conftest import FakeSource, FakeTransform, RecordingDeployer, StaticTracker


def _service(harness, sources=None, tracker=None) -> ProfilePipelineService:
    return ProfilePipelineService(harness.orchestrator, {s.name: s for s in sources or []}, tracker)


def _video(owner="carol") -> VideoMeta:
    return VideoMeta(
        title="Beach day",
        url="https://videos.test/beach",
        owner=owner,
        upload_location="Lisbon",
        timestamp=datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def test_operation_configuration():
    assert OPERATIONS["profile_search"].score_input == "transformed"
    assert OPERATIONS["full_analysis"].score_input == "both"
    assert OPERATIONS["interaction_analysis"].score_input == "both"
    assert OPERATIONS["video_upload"].deploy_on_escalation is True
    assert OPERATIONS["viewer_data_fetch"].deploy_on_escalation is True
    assert OPERATIONS["profile_search"].deploy_on_escalation is False


def test_connectors_for_skips_unconfigured_sources(make_harness):
    social = FakeSource("social")
    service = _service(make_harness(), [social, FakeSource("viewers")])

    assert service.connectors_for("profile_search") == [social]
    assert service.connectors_for("unknown") == []


@pytest.mark.asyncio
async def test_profile_search_uses_its_sources_and_never_deploys(make_harness):
    harness = make_harness(transform=FakeTransform({"model_risk": 0.9}))
    social, web, viewers = FakeSource("social", {"a": 1}), FakeSource("web", {"b": 2}), FakeSource("viewers")
    service = _service(harness, [social, web, viewers])

    result = await service.run_profile_search("alice")

    assert result.run.operation == "profile_search"
    assert social.calls == ["alice"] and web.calls == ["alice"]
    assert viewers.calls == []
    assert result.escalation.status is EscalationStatus.TRIGGERED
    assert result.escalation.deployment is None
    assert harness.deployer.deployed == []


@pytest.mark.asyncio
async def test_video_upload_persists_under_title_and_deploys_on_escalation(make_harness, codec):
    harness = make_harness(transform=FakeTransform({"model_risk": 0.8}))
    viewers = FakeSource("viewers", {"count": 42})
    service = _service(harness, [viewers])

    result = await service.run_video_upload(_video())

    assert viewers.calls == ["carol"]
    assert ("video_upload", "Beach day") in harness.sink.records
    decoded = await codec.decode(result.record)
    assert decoded.payload["video.title"] == "Beach day"
    assert decoded.payload["video.upload_location"] == "Lisbon"
    assert decoded.payload["viewers.count"] == 42
    assert result.escalation.status is EscalationStatus.TRIGGERED
    assert result.escalation.deployment is DeploymentStatus.DISPATCHED
    assert harness.deployer.deployed == [result.record]


@pytest.mark.asyncio
async def test_video_upload_fails_when_viewer_sources_fail(make_harness):
    harness = make_harness()
    service = _service(harness, [FakeSource("viewers", error=SourceError("down"))])

    with pytest.raises(PipelineError) as exc_info:
        await service.run_video_upload(_video())

    assert exc_info.value.stage is Stage.COLLECT
    assert harness.sink.calls == []


@pytest.mark.asyncio
async def test_viewer_data_fetch_reports_failed_deployment_without_failing(make_harness):
    harness = make_harness(
        transform=FakeTransform({"model_risk": 0.99}),
        deployer=RecordingDeployer(error=DeploymentError("asset host unreachable")),
    )
    service = _service(harness, [FakeSource("viewers", {"count": 3})])

    result = await service.run_viewer_data_fetch("profile-7")

    assert result.run.status is RunStatus.DONE
    assert ("viewer_data_fetch", "profile-7") in harness.sink.records
    assert result.escalation.status is EscalationStatus.TRIGGERED
    assert result.escalation.deployment is DeploymentStatus.FAILED


@pytest.mark.asyncio
async def test_duplicate_escalation_does_not_redeploy(make_harness):
    harness = make_harness(transform=FakeTransform({"model_risk": 0.99}))
    service = _service(harness, [FakeSource("viewers", {"count": 3})])

    await service.run_viewer_data_fetch("profile-7")
    second = await service.run_viewer_data_fetch("profile-7")

    assert second.escalation.status is EscalationStatus.DUPLICATE_SUPPRESSED
    assert len(harness.deployer.deployed) == 1


@pytest.mark.asyncio
async def test_full_analysis_scores_raw_source_signals(make_harness):
    harness = make_harness()
    service = _service(
        harness,
        [
            FakeSource("all_sources", {"watchlist_match": True}),
            FakeSource("social", {"followers": 9}),
            FakeSource("web", error=SourceError("down")),
        ],
    )

    result = await service.run_full_analysis("dave")

    assert result.assessment.category is RiskCategory.HIGH
    assert [(s.source, s.name) for s in result.assessment.evidence] == [("all_sources", "watchlist_match")]
    assert result.escalation.deployment is None
    assert ("full_analysis", "dave") in harness.sink.records


def _records(identifier: str) -> dict:
    if identifier == "v-bad":
        return {"criminal_records": ["burglary", "fraud"], "flagged": True}
    return {"criminal_records": []}


@pytest.mark.asyncio
async def test_interaction_analysis_scores_each_unique_visitor(make_harness, codec):
    harness = make_harness()
    tracker = StaticTracker(
        [
            {"id": "v-good", "ip": "10.0.0.1"},
            {"id": "v-bad", "ip": "10.0.0.2"},
            {"id": "v-good", "ip": "10.0.0.9"},
            {"ip": "10.0.0.3"},
        ]
    )
    records = FakeSource("records", _records)
    service = _service(harness, [records], tracker)

    result = await service.run_interaction_analysis("vid-1")

    assert tracker.calls == ["vid-1"]
    assert sorted(records.calls) == ["v-bad", "v-good"]
    by_id = {v.visitor_id: v for v in result.visitors}
    assert set(by_id) == {"v-good", "v-bad"}
    assert by_id["v-good"].assessment.category is RiskCategory.NONE
    assert by_id["v-bad"].assessment.category is RiskCategory.HIGH
    assert [v.visitor_id for v in result.high_risk] == ["v-bad"]

    assert by_id["v-bad"].escalation.status is EscalationStatus.TRIGGERED
    assert by_id["v-bad"].escalation.deployment is DeploymentStatus.DISPATCHED
    assert by_id["v-good"].escalation is None
    assert harness.deployer.deployed == [by_id["v-bad"].secured]

    assert harness.sink.calls == [("interaction_analysis", "vid-1")]
    batch = await codec.decode(harness.sink.records[("interaction_analysis", "vid-1")])
    assert {v["visitor_id"] for v in batch.payload["visitors"]} == {"v-good", "v-bad"}
    visitor = await codec.decode(by_id["v-bad"].secured)
    assert visitor.identifier == "v-bad"
    assert visitor.payload["tracker.ip"] == "10.0.0.2"


@pytest.mark.asyncio
async def test_interaction_visitor_survives_failed_sources(make_harness):
    harness = make_harness()
    tracker = StaticTracker([{"id": "v1"}])
    service = _service(harness, [FakeSource("records", error=SourceError("down"))], tracker)

    result = await service.run_interaction_analysis("vid-2")

    assert [v.visitor_id for v in result.visitors] == ["v1"]
    assert result.visitors[0].failures[0].source == "records"
    assert result.visitors[0].failures[0].kind is ErrorKind.SOURCE_UNAVAILABLE


@pytest.mark.asyncio
async def test_interaction_analysis_with_no_visitors_persists_empty_batch(make_harness, codec):
    harness = make_harness()
    service = _service(harness, [FakeSource("records")], StaticTracker([]))

    result = await service.run_interaction_analysis("vid-3")

    assert result.visitors == []
    assert Stage.ESCALATE not in result.run.executed_stages
    batch = await codec.decode(harness.sink.records[("interaction_analysis", "vid-3")])
    assert batch.payload == {"visitors": []}


@pytest.mark.asyncio
async def test_interaction_analysis_without_tracker_fails_collect(make_harness):
    service = _service(make_harness(), [FakeSource("records")])

    with pytest.raises(PipelineError) as exc_info:
        await service.run_interaction_analysis("vid-4")

    assert exc_info.value.stage is Stage.COLLECT
    assert exc_info.value.kind is ErrorKind.SOURCE_UNAVAILABLE


@pytest.mark.asyncio
async def test_tracker_source_name_is_reserved(make_harness):
    service = _service(make_harness(), [], StaticTracker([{"id": "v1"}]))
    service.sources["tracker"] = FakeSource("tracker")
    service.operation_sources["interaction_analysis"] = ("tracker",)

    with pytest.raises(ValueError):
        await service.run_interaction_analysis("vid-5")


@pytest.mark.asyncio
async def test_close_closes_sources_and_tolerates_failures(make_harness):
    harness = make_harness()
    social = FakeSource("social")
    service = _service(harness, [social])
    harness.sink.close = AsyncMock(side_effect=RuntimeError("already closed"))

    await service.close()

    assert social.closed is True
    harness.sink.close.assert_awaited_once()
