"""Tests for the historical comparator."""
from datetime import timedelta

import pytest

from riskgate.models.database import utcnow
from riskgate.pipeline.historical import ComparatorConfig, HistoricalComparator
from tests.factories import build_booking, build_fleet


class TestCompare:
    @pytest.mark.parametrize("score", [0, 1, 50, 99, 100])
    @pytest.mark.parametrize("size", [0, 1, 5, 10])
    def test_small_sample_is_neutral(self, score: int, size: int) -> None:
        result = HistoricalComparator(ComparatorConfig()).compare(score, [score] * size)

        assert result.percentile == 50
        assert result.is_anomaly is False
        assert result.insufficient_history is True
        assert result.sample_size == size

    def test_mid_rank_percentile(self) -> None:
        sample = list(range(10, 130, 10))  # 12 values: 10..120

        result = HistoricalComparator(ComparatorConfig()).compare(60, sample)

        # 5 below, 1 equal -> (5 + 0.5) / 12
        assert result.percentile == pytest.approx(45.8, abs=0.1)
        assert result.is_anomaly is False
        assert result.insufficient_history is False
        assert result.mean == pytest.approx(65.0)

    def test_top_tail_is_anomalous(self) -> None:
        sample = [20, 22, 25, 25, 28, 30, 30, 31, 33, 35, 36, 40]

        result = HistoricalComparator(ComparatorConfig()).compare(95, sample)

        assert result.percentile == 100
        assert result.is_anomaly is True
        assert result.z_score > 2

    def test_bottom_tail_is_anomalous(self) -> None:
        sample = [40, 42, 45, 45, 48, 50, 50, 51, 53, 55, 56, 60]

        result = HistoricalComparator(ComparatorConfig()).compare(5, sample)

        assert result.percentile == 0
        assert result.is_anomaly is True

    def test_constant_sample_has_zero_deviation(self) -> None:
        result = HistoricalComparator(ComparatorConfig()).compare(40, [40] * 20)

        assert result.percentile == 50
        assert result.std_dev == 0
        assert result.z_score == 0
        assert result.is_anomaly is False


class TestFetchSample:
    @pytest.mark.asyncio
    async def test_excludes_self_cancelled_and_unscored(self, seed, session) -> None:
        host, car = build_fleet()
        now = utcnow()
        target = build_booking(car, risk_score=50)
        rows = [
            build_booking(car, risk_score=10 + i, created_at=now - timedelta(hours=i + 1))
            for i in range(12)
        ]
        excluded = [
            build_booking(car, risk_score=99, status="CANCELLED"),
            build_booking(car, risk_score=None),
            build_booking(car, risk_score=0),
        ]
        await seed(host, car, target, *rows, *excluded)

        sample = await HistoricalComparator(ComparatorConfig()).fetch_sample(session, target.id)

        assert sorted(sample) == [10 + i for i in range(12)]

    @pytest.mark.asyncio
    async def test_sample_is_limited_to_most_recent(self, seed, session) -> None:
        host, car = build_fleet()
        now = utcnow()
        rows = [
            build_booking(car, risk_score=i + 1, created_at=now - timedelta(minutes=i))
            for i in range(20)
        ]
        await seed(host, car, *rows)

        comparator = HistoricalComparator(ComparatorConfig(sample_size=5))
        sample = await comparator.fetch_sample(session, "bk_missing")

        assert sample == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_analyze_degrades_to_neutral(self, session) -> None:
        class BrokenComparator(HistoricalComparator):
            async def fetch_sample(self, session, booking_id):
                raise RuntimeError("store offline")

        result = await BrokenComparator(ComparatorConfig()).analyze(session, "bk_1", 80)

        assert result.percentile == 50
        assert result.is_anomaly is False
        assert result.insufficient_history is True
