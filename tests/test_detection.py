"""Tests for the availability detection pipeline."""

import pytest

from fakes import IN_STOCK_HTML, SOLD_OUT_HTML, FakePage, StubSite
from stockwatch.automation.detection import (
    DetectionContext,
    DetectionPipeline,
    Verdict,
    generic_element_scan,
    scan_markup,
    structured_button_scan,
)
from stockwatch.core.exceptions import DetectionError

CTX = DetectionContext(keyword="Add to Bag")


class TestScanMarkup:
    def test_keyword_present(self):
        assert scan_markup(IN_STOCK_HTML, CTX) == Verdict.FOUND

    def test_keyword_absent(self):
        assert scan_markup(SOLD_OUT_HTML, CTX) == Verdict.NOT_FOUND

    def test_case_insensitive(self):
        assert scan_markup("<button>ADD TO BAG</button>", CTX) == Verdict.FOUND

    def test_keyword_next_to_unavailable_phrase(self):
        html = "<div>Add to Bag</div><span>Out of stock</span>"
        assert scan_markup(html, CTX) == Verdict.UNAVAILABLE

    def test_unavailable_phrase_far_away_is_ignored(self):
        html = "<p>Sold out</p>" + ("x" * 1000) + "<div>Add to Bag</div>"
        assert scan_markup(html, CTX) == Verdict.FOUND

    def test_any_clear_occurrence_wins(self):
        html = "<div>Add to Bag</div> notify me" + ("x" * 1000) + "<div>Add to Bag</div>"
        assert scan_markup(html, CTX) == Verdict.FOUND

    def test_custom_phrases(self):
        ctx = DetectionContext(keyword="Buy now", unavailable_phrases=["coming soon"])
        assert scan_markup("<b>Buy now</b> coming soon", ctx) == Verdict.UNAVAILABLE


@pytest.mark.asyncio
async def test_structured_scan_only_confirms():
    page = FakePage(StubSite(evaluate_result="unavailable"))
    assert await structured_button_scan(page, CTX) == Verdict.INCONCLUSIVE

    page = FakePage(StubSite(evaluate_result="found"))
    assert await structured_button_scan(page, CTX) == Verdict.FOUND


@pytest.mark.asyncio
async def test_generic_scan_reports_unavailable():
    page = FakePage(StubSite(evaluate_result="unavailable"))
    assert await generic_element_scan(page, CTX) == Verdict.UNAVAILABLE


@pytest.mark.asyncio
async def test_unknown_script_result_is_inconclusive():
    page = FakePage(StubSite(evaluate_result=None))
    assert await generic_element_scan(page, CTX) == Verdict.INCONCLUSIVE


class TestPipeline:
    @pytest.mark.asyncio
    async def test_first_definitive_verdict_wins(self):
        calls = []

        async def inconclusive(page, ctx):
            calls.append("inconclusive")
            return Verdict.INCONCLUSIVE

        async def unavailable(page, ctx):
            calls.append("unavailable")
            return Verdict.UNAVAILABLE

        async def found(page, ctx):
            calls.append("found")
            return Verdict.FOUND

        pipeline = DetectionPipeline("Add to Bag", strategies=[inconclusive, unavailable, found])
        assert await pipeline.detect(page=None) == Verdict.UNAVAILABLE
        assert calls == ["inconclusive", "unavailable"]

    @pytest.mark.asyncio
    async def test_all_inconclusive_is_not_found(self):
        async def inconclusive(page, ctx):
            return Verdict.INCONCLUSIVE

        pipeline = DetectionPipeline("Add to Bag", strategies=[inconclusive, inconclusive])
        assert await pipeline.detect(page=None) == Verdict.NOT_FOUND

    @pytest.mark.asyncio
    async def test_failing_strategy_falls_through(self):
        async def broken(page, ctx):
            raise RuntimeError("script error")

        async def found(page, ctx):
            return Verdict.FOUND

        pipeline = DetectionPipeline("Add to Bag", strategies=[broken, found])
        assert await pipeline.detect(page=None) == Verdict.FOUND

    @pytest.mark.asyncio
    async def test_all_strategies_failing_raises(self):
        async def broken(page, ctx):
            raise RuntimeError("script error")

        pipeline = DetectionPipeline("Add to Bag", strategies=[broken, broken])
        with pytest.raises(DetectionError):
            await pipeline.detect(page=None)

    @pytest.mark.asyncio
    async def test_default_strategies_fall_back_to_markup(self):
        page = FakePage(StubSite(html=IN_STOCK_HTML, evaluate_result="inconclusive"))
        assert await DetectionPipeline("Add to Bag").detect(page) == Verdict.FOUND

    @pytest.mark.asyncio
    async def test_default_strategies_when_scripts_fail(self):
        page = FakePage(StubSite(html=SOLD_OUT_HTML, evaluate_result=RuntimeError("page crashed")))
        assert await DetectionPipeline("Add to Bag").detect(page) == Verdict.NOT_FOUND

    def test_verdict_availability(self):
        assert Verdict.FOUND.available
        assert not Verdict.UNAVAILABLE.available
        assert not Verdict.NOT_FOUND.available
