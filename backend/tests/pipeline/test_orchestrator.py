"""Page orchestration: concurrency, degradation, ordering and stale results."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from balloonfuse.pipeline.errors import DetectionFailed, ModelUnavailable, RemoteServiceTerminal
from balloonfuse.pipeline.model import (
    BalloonShape,
    DetectedRegion,
    MatchKind,
    MergedBalloon,
    NormalizedRect,
    RefinedBalloon,
    SemanticBalloon,
)
from balloonfuse.pipeline.orchestrator import BalloonPipeline, PageResult, PageResultStore


def _semantic(text: str, box) -> SemanticBalloon:
    return SemanticBalloon(text, f"{text}-it", True, BalloonShape.OVAL, box)


SEMANTICS = [
    _semantic("first", (100, 100, 300, 300)),
    _semantic("second", (500, 500, 700, 700)),
    _semantic("third", (800, 100, 900, 300)),
]


def _contour_refiner(merged: MergedBalloon) -> RefinedBalloon:
    rect = merged.geometry
    return RefinedBalloon(
        merged=merged,
        contour=((rect.x0, rect.y0), (rect.x1, rect.y0), (rect.x1, rect.y1)),
    )


class TestBalloonPipeline:
    def setup_method(self) -> None:
        self.image = np.full((100, 100, 3), 255, dtype=np.uint8)
        self.detector = MagicMock()
        self.detector.detect = AsyncMock(return_value=[DetectedRegion(NormalizedRect(0.1, 0.1, 0.3, 0.3), 0.9)])
        self.semantic = MagicMock()
        self.semantic.fetch = AsyncMock(return_value=list(SEMANTICS))
        self.refiner = MagicMock()
        self.refiner.refine_balloon.side_effect = lambda image, merged: _contour_refiner(merged)

    def _pipeline(self, settings) -> BalloonPipeline:
        return BalloonPipeline(self.detector, self.semantic, self.refiner, settings=settings)

    def test_process_page_fuses_and_refines(self, settings) -> None:
        result = asyncio.run(self._pipeline(settings).process_page(self.image, page_id="p1"))

        assert result.page_id == "p1"
        assert result.num_detections == 1
        assert [b.merged.original_text for b in result.balloons] == ["first", "second", "third"]
        assert result.balloons[0].merged.match is MatchKind.IOU
        assert all(b.has_contour for b in result.balloons)
        assert self.refiner.refine_balloon.call_count == 3

    def test_sources_run_concurrently(self, settings) -> None:
        async def slow_detect(image):
            await asyncio.sleep(0.2)
            return []

        async def slow_fetch(image):
            await asyncio.sleep(0.2)
            return list(SEMANTICS)

        self.detector.detect = slow_detect
        self.semantic.fetch = slow_fetch

        start = time.perf_counter()
        asyncio.run(self._pipeline(settings).process_page(self.image))
        assert time.perf_counter() - start < 0.35

    @pytest.mark.parametrize("error", [ModelUnavailable("no weights"), DetectionFailed(RuntimeError("boom"))])
    def test_detector_failure_degrades_to_semantic_geometry(self, settings, error: Exception) -> None:
        self.detector.detect = AsyncMock(side_effect=error)

        result = asyncio.run(self._pipeline(settings).process_page(self.image))

        assert result.num_detections == 0
        assert len(result.balloons) == 3
        assert [b.geometry for b in result.balloons] == [s.rect for s in SEMANTICS]
        assert all(b.merged.match is MatchKind.NONE for b in result.balloons)

    def test_semantic_failure_fails_the_page(self, settings) -> None:
        self.semantic.fetch = AsyncMock(side_effect=RemoteServiceTerminal("bad key", status_code=401))

        with pytest.raises(RemoteServiceTerminal):
            asyncio.run(self._pipeline(settings).process_page(self.image))
        self.refiner.refine_balloon.assert_not_called()

    def test_order_survives_out_of_order_completion(self, settings) -> None:
        delays = {"first": 0.15, "second": 0.0, "third": 0.05}

        def slow_refine(image, merged):
            time.sleep(delays[merged.original_text])
            return _contour_refiner(merged)

        self.refiner.refine_balloon.side_effect = slow_refine

        result = asyncio.run(self._pipeline(settings).process_page(self.image))

        assert [b.merged.original_text for b in result.balloons] == ["first", "second", "third"]

    def test_refine_failure_is_contained(self, settings) -> None:
        def flaky_refine(image, merged):
            if merged.original_text == "second":
                raise RuntimeError("grabCut exploded")
            return _contour_refiner(merged)

        self.refiner.refine_balloon.side_effect = flaky_refine

        result = asyncio.run(self._pipeline(settings).process_page(self.image))

        assert len(result.balloons) == 3
        assert [b.has_contour for b in result.balloons] == [True, False, True]
        assert result.balloons[1].merged.original_text == "second"

    def test_empty_page(self, settings) -> None:
        self.semantic.fetch = AsyncMock(return_value=[])

        result = asyncio.run(self._pipeline(settings).process_page(self.image))

        assert result.balloons == ()
        self.refiner.refine_balloon.assert_not_called()

    def test_process_and_commit_publishes_result(self, settings) -> None:
        store = PageResultStore()

        result = asyncio.run(self._pipeline(settings).process_and_commit(store, self.image, page_id="p1"))

        assert result is not None
        assert store.get("p1") is result

    def test_superseded_run_is_not_published(self, settings) -> None:
        store = PageResultStore()
        calls = {"n": 0}

        async def fetch(image):
            calls["n"] += 1
            if calls["n"] == 1:
                await asyncio.sleep(0.2)
                return [SEMANTICS[0]]
            return [SEMANTICS[1]]

        self.semantic.fetch = fetch
        pipeline = self._pipeline(settings)

        async def run_both():
            first = asyncio.create_task(pipeline.process_and_commit(store, self.image, page_id="p1"))
            await asyncio.sleep(0.05)
            second = asyncio.create_task(pipeline.process_and_commit(store, self.image, page_id="p1"))
            return await asyncio.gather(first, second)

        stale, fresh = asyncio.run(run_both())

        assert stale is None
        assert fresh is not None
        assert store.get("p1") is fresh
        assert [b.merged.original_text for b in fresh.balloons] == ["second"]


class TestPageResultStore:
    def setup_method(self) -> None:
        self.store = PageResultStore()

    def _result(self, page_id: str) -> PageResult:
        return PageResult(page_id=page_id, balloons=(), num_detections=0, elapsed_ms=1)

    def test_latest_ticket_commits(self) -> None:
        ticket = self.store.begin("p1")
        result = self._result("p1")

        assert self.store.commit(ticket, result) is True
        assert self.store.get("p1") is result

    def test_stale_result_is_dropped(self) -> None:
        stale = self.store.begin("p1")
        fresh = self.store.begin("p1")
        fresh_result = self._result("p1")

        assert self.store.commit(fresh, fresh_result) is True
        assert self.store.commit(stale, self._result("p1")) is False
        assert self.store.get("p1") is fresh_result

    def test_result_for_other_page_is_dropped(self) -> None:
        ticket = self.store.begin("p1")

        assert self.store.commit(ticket, self._result("p2")) is False
        assert self.store.get("p1") is None
        assert self.store.get("p2") is None

    def test_pages_are_versioned_independently(self) -> None:
        a = self.store.begin("a")
        self.store.begin("b")

        assert self.store.commit(a, self._result("a")) is True
