import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from exceptions import PollingTimeoutError, RemoteStrategyError, ValidationError
from job_driver import RemoteJobDriver, select_strategies
from schemas import Customization, StrategyKind, StrategyResult

OVERLAYS = Customization.model_validate({"cta": {"enabled": True, "text": "Shop now"}})


def _strategy(kind, outcome):
    strategy = MagicMock()
    strategy.kind = kind
    if isinstance(outcome, Exception):
        strategy.execute = AsyncMock(side_effect=outcome)
    else:
        strategy.execute = AsyncMock(return_value=outcome)
    return strategy


def _result(kind, degraded=False):
    return StrategyResult(strategy=kind, final_url=f"https://media.test/{kind.value}.mp4", degraded=degraded)


def _context(job, customization=None):
    return SimpleNamespace(job=job, customization=customization or Customization())


# ==============================================================================
# Selection policy
# ==============================================================================
def test_overlays_select_template_render_only(config):
    assert select_strategies(config, OVERLAYS) == [StrategyKind.TEMPLATE_RENDER]


def test_overlays_without_renderer_fail_fast(make_config):
    with pytest.raises(ValidationError):
        select_strategies(make_config(creatomate_api_key=None), OVERLAYS)


def test_media_host_selects_chain_then_manifest(config):
    assert select_strategies(config, Customization()) == [
        StrategyKind.TRANSFORMATION_CHAIN,
        StrategyKind.MANIFEST,
    ]


def test_nothing_remote_selects_binary(make_config):
    no_remote = make_config(cloudinary_cloud_name=None, cloudinary_api_key=None, cloudinary_api_secret=None)
    assert select_strategies(no_remote, None) == [StrategyKind.BINARY_CONCAT]


# ==============================================================================
# Fallback
# ==============================================================================
def test_chain_rejection_falls_back_to_manifest(config, job):
    chain = _strategy(StrategyKind.TRANSFORMATION_CHAIN, RemoteStrategyError("transformation_chain", "URL too long"))
    manifest = _strategy(StrategyKind.MANIFEST, _result(StrategyKind.MANIFEST))
    driver = RemoteJobDriver(config, {chain.kind: chain, manifest.kind: manifest})

    result = asyncio.run(driver.run(_context(job)))

    assert result.strategy == StrategyKind.MANIFEST
    assert job.strategy == StrategyKind.MANIFEST
    chain.execute.assert_awaited_once()
    manifest.execute.assert_awaited_once()


def test_successful_chain_skips_manifest(config, job):
    chain = _strategy(StrategyKind.TRANSFORMATION_CHAIN, _result(StrategyKind.TRANSFORMATION_CHAIN))
    manifest = _strategy(StrategyKind.MANIFEST, _result(StrategyKind.MANIFEST))
    driver = RemoteJobDriver(config, {chain.kind: chain, manifest.kind: manifest})

    result = asyncio.run(driver.run(_context(job)))

    assert result.strategy == StrategyKind.TRANSFORMATION_CHAIN
    manifest.execute.assert_not_awaited()


def test_every_strategy_rejected_raises_the_last_error(config, job):
    last = RemoteStrategyError("manifest", "manifest rejected")
    chain = _strategy(StrategyKind.TRANSFORMATION_CHAIN, RemoteStrategyError("transformation_chain", "nope"))
    manifest = _strategy(StrategyKind.MANIFEST, last)
    driver = RemoteJobDriver(config, {chain.kind: chain, manifest.kind: manifest})

    with pytest.raises(RemoteStrategyError) as exc_info:
        asyncio.run(driver.run(_context(job)))

    assert exc_info.value is last


def test_timeouts_do_not_fall_back(config, job):
    chain = _strategy(StrategyKind.TRANSFORMATION_CHAIN, PollingTimeoutError("p1_x", 10))
    manifest = _strategy(StrategyKind.MANIFEST, _result(StrategyKind.MANIFEST))
    driver = RemoteJobDriver(config, {chain.kind: chain, manifest.kind: manifest})

    with pytest.raises(PollingTimeoutError):
        asyncio.run(driver.run(_context(job)))

    manifest.execute.assert_not_awaited()


def test_failed_render_is_not_retried_with_other_strategies(config, job):
    render = _strategy(StrategyKind.TEMPLATE_RENDER, RemoteStrategyError("template_render", "render failed"))
    chain = _strategy(StrategyKind.TRANSFORMATION_CHAIN, _result(StrategyKind.TRANSFORMATION_CHAIN))
    driver = RemoteJobDriver(config, {render.kind: render, chain.kind: chain})

    with pytest.raises(RemoteStrategyError):
        asyncio.run(driver.run(_context(job, OVERLAYS)))

    chain.execute.assert_not_awaited()


def test_binary_result_marks_job_degraded(make_config, job):
    no_remote = make_config(cloudinary_cloud_name=None, cloudinary_api_key=None, cloudinary_api_secret=None)
    binary = _strategy(StrategyKind.BINARY_CONCAT, _result(StrategyKind.BINARY_CONCAT, degraded=True))
    driver = RemoteJobDriver(no_remote, {binary.kind: binary})

    asyncio.run(driver.run(_context(job)))

    assert job.strategy == StrategyKind.BINARY_CONCAT
    assert job.degraded is True
