import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

import app
from exceptions import ConfigurationError, ValidationError
from schemas import CleanupReport, StrategyKind


@pytest.fixture
def orchestrator(monkeypatch, config):
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock()
    orchestrator.cleanup_only = AsyncMock(return_value=CleanupReport(deleted=["p1_trimmed_x_0"]))

    factory = MagicMock()
    factory.from_config.return_value = orchestrator
    monkeypatch.setattr(app, "ExportOrchestrator", factory)
    monkeypatch.setattr(app, "get_config", lambda: config)
    return orchestrator


def test_export_payload_runs_the_pipeline(orchestrator, job):
    job.strategy = StrategyKind.MANIFEST
    orchestrator.run.return_value = job
    payload = {"jobId": "job-1", "selectedClipIds": ["a"], "targetDuration": 15, "platform": "instagram"}

    result = asyncio.run(app.main(json.dumps(payload)))

    assert result is job
    request = orchestrator.run.await_args.args[0]
    assert (request.job_id, request.target_duration, request.platform) == ("job-1", 15, "instagram")
    orchestrator.cleanup_only.assert_not_awaited()


def test_cleanup_payload_only_cleans_up(orchestrator):
    report = asyncio.run(app.main({"action": "cleanup", "job_id": "job-1"}))

    assert report.deleted == ["p1_trimmed_x_0"]
    orchestrator.cleanup_only.assert_awaited_once_with("job-1")
    orchestrator.run.assert_not_awaited()


def test_cleanup_requires_job_id(orchestrator):
    with pytest.raises(ValidationError):
        asyncio.run(app.main({"action": "cleanup"}))


def test_missing_payload(monkeypatch):
    monkeypatch.setattr(app, "PAYLOAD_JSON", None)
    with pytest.raises(ConfigurationError):
        asyncio.run(app.main())


@pytest.mark.parametrize("payload", ["[1, 2]", "not json at all"])
def test_payload_must_be_an_object(orchestrator, payload):
    with pytest.raises(ValidationError):
        asyncio.run(app.main(payload))


def test_invalid_export_request(orchestrator):
    with pytest.raises(ValidationError):
        asyncio.run(app.main({"jobId": "job-1", "selectedClipIds": [], "targetDuration": 15, "platform": "youtube"}))
    orchestrator.run.assert_not_awaited()
