import asyncio
from unittest.mock import AsyncMock, MagicMock

from cleanup_helper import AssetCleaner
from cloudinary_helper import CloudinaryAPIError
from schemas import ResourceKind


def _cloudinary(verdicts):
    """verdicts: asset id -> verdict string or exception, repeated on every call."""
    cloudinary = MagicMock()

    async def delete_resource(public_id, resource_type="video"):
        verdict = verdicts[public_id]
        if isinstance(verdict, Exception):
            raise verdict
        return verdict

    cloudinary.delete_resource = AsyncMock(side_effect=delete_resource)
    return cloudinary


def test_cleanup_reports_deleted_absent_and_failed():
    cloudinary = _cloudinary({
        "p1_a": "deleted",
        "p1_b": "not_found",
        "p1_c": CloudinaryAPIError("rate limited", 420),
    })
    sleep = AsyncMock()

    report = asyncio.run(AssetCleaner(cloudinary, sleep=sleep).cleanup(["p1_c", "p1_a", "p1_b"]))

    assert report.deleted == ["p1_a", "p1_b"]
    assert report.already_absent == ["p1_b"]
    assert report.failed == ["p1_c"]
    assert report.total_processed == 3
    # one call each for a and b, three attempts for c
    assert cloudinary.delete_resource.await_count == 5


def test_cleanup_is_idempotent():
    verdicts = {"p1_a": "deleted", "p2_m.vtt": "deleted"}
    cloudinary = _cloudinary(verdicts)
    cleaner = AssetCleaner(cloudinary, sleep=AsyncMock())
    kinds = {"p1_a": ResourceKind.VIDEO, "p2_m.vtt": ResourceKind.RAW}

    first = asyncio.run(cleaner.cleanup(kinds.keys(), kinds))
    verdicts.update({"p1_a": "not_found", "p2_m.vtt": "not_found"})
    second = asyncio.run(cleaner.cleanup(kinds.keys(), kinds))

    assert first.failed == [] and second.failed == []
    assert sorted(second.already_absent) == ["p1_a", "p2_m.vtt"]


def test_cleanup_uses_resource_kind_per_asset():
    cloudinary = _cloudinary({"p1_a": "deleted", "p2_m.vtt": "deleted"})

    asyncio.run(AssetCleaner(cloudinary, sleep=AsyncMock()).cleanup(
        ["p1_a", "p2_m.vtt"], {"p2_m.vtt": ResourceKind.RAW},
    ))

    calls = {call.args[0]: call.args[1] for call in cloudinary.delete_resource.await_args_list}
    assert calls == {"p1_a": "video", "p2_m.vtt": "raw"}


def test_unexpected_verdict_is_retried_then_reported():
    cloudinary = _cloudinary({"p1_a": "unknown"})

    report = asyncio.run(AssetCleaner(cloudinary, max_attempts=2, sleep=AsyncMock()).cleanup(["p1_a"]))

    assert report.failed == ["p1_a"]
    assert cloudinary.delete_resource.await_count == 2


def test_empty_cleanup_makes_no_calls():
    cloudinary = _cloudinary({})

    report = asyncio.run(AssetCleaner(cloudinary, sleep=AsyncMock()).cleanup([]))

    assert report.total_processed == 0
    cloudinary.delete_resource.assert_not_awaited()
