"""
Shared fixtures for the clip-studio test suite.

Module import paths (the shared layer and the concatenate-clips function)
are provided through `pythonpath` in pyproject.toml.
"""

import copy
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from config import PipelineConfig, PollingBounds
from schemas import CatalogAsset, ClipReference, Customization, ProcessingJob, TrimPlanEntry
from strategies import StrategyContext


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: end-to-end runs of the export orchestrator")


class InMemoryTable:
    """Just enough of a boto3 Table for DynamoDBHelper: put/get/update/scan."""

    def __init__(self, key_name: str = "job_id"):
        self.key_name = key_name
        self.items: Dict[str, Dict[str, Any]] = {}

    def put_item(self, Item):
        self.items[Item[self.key_name]] = copy.deepcopy(Item)
        return {}

    def get_item(self, Key):
        item = self.items.get(Key[self.key_name])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def update_item(self, Key, UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues=None):
        values = ExpressionAttributeValues or {}
        item = self.items.setdefault(Key[self.key_name], dict(Key))

        set_part, _, remove_part = UpdateExpression.partition(" REMOVE ")
        if set_part.startswith("REMOVE "):
            set_part, remove_part = "", set_part[len("REMOVE "):]
        if set_part:
            for assignment in set_part[len("SET "):].split(", "):
                name, value = assignment.split(" = ")
                item[ExpressionAttributeNames[name]] = copy.deepcopy(values[value])
        if remove_part:
            for name in remove_part.split(", "):
                item.pop(ExpressionAttributeNames[name], None)
        return {}

    def scan(self, **kwargs):
        return {"Items": [copy.deepcopy(item) for item in self.items.values()]}


@pytest.fixture
def in_memory_table():
    return InMemoryTable()


@pytest.fixture
def make_config():
    def _make(**overrides) -> PipelineConfig:
        values = dict(
            catalog_table="clip-studio-catalog-test",
            jobs_table="clip-studio-jobs-test",
            results_bucket="clip-studio-results-test",
            cloudinary_cloud_name="demo",
            cloudinary_api_key="key",
            cloudinary_api_secret="secret",
            creatomate_api_key="creatomate-key",
            asset_polling=PollingBounds(max_attempts=3, interval_ms=10),
            render_polling=PollingBounds(max_attempts=3, interval_ms=10),
        )
        values.update(overrides)
        return PipelineConfig(**values)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def catalog_assets() -> List[CatalogAsset]:
    base = "https://res.cloudinary.com/demo/video/upload"
    return [
        CatalogAsset(id="clip-a", name="Intro", duration_seconds=5.0, hosted_url=f"{base}/v1700000001/ads/intro.mp4"),
        CatalogAsset(id="clip-b", name="Product", duration_seconds=20.0, hosted_url=f"{base}/ads/product.mp4"),
        CatalogAsset(id="clip-c", name="Outro", duration_seconds=5.0, hosted_url=f"{base}/v1700000003/outro.mp4"),
        CatalogAsset(id="clip-old", name="Retired", duration_seconds=8.0, hosted_url=f"{base}/old.mp4", active=False),
        CatalogAsset(id="clip-broken", name="Broken", duration_seconds=6.0, hosted_url=""),
    ]


@pytest.fixture
def clips() -> List[ClipReference]:
    return [
        ClipReference(id="clip-a", duration_seconds=5.0, source_url="https://cdn.test/a.mp4",
                      public_id="ads/intro", order=0),
        ClipReference(id="clip-b", duration_seconds=20.0, source_url="https://cdn.test/b.mp4",
                      public_id="ads/product", order=1),
        ClipReference(id="clip-c", duration_seconds=5.0, source_url="https://cdn.test/c.mp4",
                      public_id="outro", order=2),
    ]


@pytest.fixture
def plan() -> List[TrimPlanEntry]:
    return [
        TrimPlanEntry(clip_id="clip-a", original_duration=5.0, trimmed_duration=2.5),
        TrimPlanEntry(clip_id="clip-b", original_duration=20.0, trimmed_duration=10.0),
        TrimPlanEntry(clip_id="clip-c", original_duration=5.0, trimmed_duration=2.5),
    ]


@pytest.fixture
def job(clips) -> ProcessingJob:
    return ProcessingJob(
        job_id="job-1234abcd-5678",
        clips=clips,
        target_duration=15.0,
        platform="youtube",
        created_at="2025-01-01T12:00:00+00:00",
    )


@pytest.fixture
def make_context(job, plan, config):
    """StrategyContext with recording emit/register callbacks."""

    def _make(**overrides) -> StrategyContext:
        values = dict(
            job=job,
            plan=plan,
            customization=Customization(),
            emit=AsyncMock(),
            register_temporary=AsyncMock(),
            http=None,
            asset_polling=config.asset_polling,
            render_polling=config.render_polling,
        )
        values.update(overrides)
        return StrategyContext(**values)

    return _make
