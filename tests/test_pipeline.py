"""Tests for RangingPipeline, including the end-to-end example emitter."""

from __future__ import annotations

import pytest

from rssi_ranger.exceptions import ConfigurationError
from rssi_ranger.filters import ScalarKalmanFilter, UnscentedDistanceFilter
from rssi_ranger.models import PathLossParams, ReadingStatus, SignalSample, UkfParams
from rssi_ranger.pipeline import NO_SIGNAL_MESSAGE, RangingPipeline
from rssi_ranger.registry import EstimatorRegistry

from test_filters import reference_ukf_step

EMITTER = "AA:BB:CC:DD:EE:FF"


def make_sample(emitter_id: str, rssi: int, frequency_mhz: int = 2412, label: str | None = None) -> SignalSample:
    return SignalSample(emitter_id=emitter_id, rssi=rssi, frequency_mhz=frequency_mhz, label=label)


class TestExampleEmitter:
    """One emitter behind one wall, -40 dBm at 1 m, gamma 3, 3 dB per wall."""

    def test_two_samples(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, wall_count=1, min_rssi=None)

        first = pipeline.process_cycle([make_sample(EMITTER, -50)])[0]
        raw1 = 10 ** (7 / 30)
        assert first.raw_distance == pytest.approx(raw1)
        assert first.raw_distance == pytest.approx(1.711, abs=1e-3)

        second = pipeline.process_cycle([make_sample(EMITTER, -55)])[0]
        raw2 = 10 ** 0.4
        assert second.raw_distance == pytest.approx(raw2)
        assert second.raw_distance == pytest.approx(2.512, abs=1e-3)

        # seed x=raw1, P=1.0, then both samples go through the update
        x, p = reference_ukf_step(first.raw_distance, 1.0, first.raw_distance)
        assert first.distance == x
        x, p = reference_ukf_step(x, p, second.raw_distance)
        assert second.distance == x
        assert raw1 < second.distance < raw2

        state = pipeline.registry.state(EMITTER)
        assert state.p == p


class TestThreshold:
    """Minimum-strength policy."""

    def test_weak_samples_dropped_before_filters(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, min_rssi=-60)
        readings = pipeline.process_cycle([make_sample("a", -59), make_sample("b", -75), make_sample("c", -60)])
        assert [r.emitter_id for r in readings] == ["a", "c"]
        assert "b" not in pipeline.registry

    def test_threshold_disabled(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, min_rssi=None)
        assert len(pipeline.process_cycle([make_sample("a", -95)])) == 1

    def test_threshold_after_smoothing(self, wall_model: PathLossParams) -> None:
        registry = EstimatorRegistry(rssi_filter_factory=lambda: ScalarKalmanFilter(q=0.1, r=4.0))
        pipeline = RangingPipeline(wall_model, registry=registry, min_rssi=-60, threshold_stage="after")
        pipeline.process_cycle([make_sample("a", -50)])
        # a single -65 dBm dip is smoothed to above -60 and survives
        readings = pipeline.process_cycle([make_sample("a", -65)])
        assert len(readings) == 1

    def test_dropped_weak_emitter_does_not_evict_live_ones(self, wall_model: PathLossParams) -> None:
        registry = EstimatorRegistry(max_entries=2, rssi_filter_factory=lambda: ScalarKalmanFilter(q=0.1, r=4.0))
        pipeline = RangingPipeline(wall_model, registry=registry, min_rssi=-60, threshold_stage="after")
        readings = pipeline.process_cycle([make_sample("a", -50), make_sample("weak", -90), make_sample("b", -52)])
        assert [r.emitter_id for r in readings] == ["a", "b"]
        assert registry.state("a") is not None
        assert registry.state("b") is not None
        assert "weak" not in registry

    def test_unknown_stage_rejected(self, wall_model: PathLossParams) -> None:
        with pytest.raises(ConfigurationError):
            RangingPipeline(wall_model, threshold_stage="during")


class TestStages:
    """Strength and distance smoothing are independent stages."""

    def test_raw_distance_when_distance_smoothing_off(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, min_rssi=None, smooth_distance=False)
        pipeline.process_cycle([make_sample("a", -50)])
        reading = pipeline.process_cycle([make_sample("a", -55)])[0]
        assert reading.distance == reading.raw_distance
        assert len(pipeline.registry) == 0

    def test_rssi_smoothing_feeds_path_loss(self, wall_model: PathLossParams) -> None:
        registry = EstimatorRegistry(rssi_filter_factory=lambda: ScalarKalmanFilter(q=0.1, r=0.5))
        pipeline = RangingPipeline(wall_model, registry=registry, min_rssi=None, smooth_distance=False)
        pipeline.process_cycle([make_sample("a", -50)])
        reading = pipeline.process_cycle([make_sample("a", -60)])[0]
        p = 1.1
        smoothed = -50 + p / (p + 0.5) * -10
        assert reading.raw_distance == pytest.approx(10 ** ((-40 - smoothed - 3) / 30))
        assert reading.rssi == -60


class TestErrors:
    """A failing emitter is marked unavailable; the cycle continues."""

    def test_bad_frequency_marks_unavailable(self) -> None:
        pipeline = RangingPipeline(PathLossParams.free_space(0.0), min_rssi=None)
        readings = pipeline.process_cycle(
            [make_sample("a", -50), make_sample("bad", -50, frequency_mhz=0), make_sample("c", -55)]
        )
        assert [r.status for r in readings] == [ReadingStatus.OK, ReadingStatus.UNAVAILABLE, ReadingStatus.OK]
        assert readings[1].distance is None
        assert "bad" not in pipeline.registry
        assert readings[1].format_line() == "bad  (-50 dBm)  unavailable"

    def test_degenerate_state_marks_unavailable(self, wall_model: PathLossParams) -> None:
        registry = EstimatorRegistry(UnscentedDistanceFilter(UkfParams(q=0.1, r=0.5)))
        pipeline = RangingPipeline(wall_model, registry=registry, min_rssi=None)
        registry.get_or_create("a", 1.0)
        registry._entries["a"].state = registry.ukf.seed(1.0, covariance=-10.0)
        readings = pipeline.process_cycle([make_sample("a", -50), make_sample("b", -50)])
        assert readings[0].status is ReadingStatus.UNAVAILABLE
        assert readings[1].available


class TestDisplay:
    """Display list formatting."""

    def test_lines_use_label_or_id(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, wall_count=0, min_rssi=None, smooth_distance=False)
        readings = pipeline.process_cycle([make_sample("a", -40, label="office"), make_sample("b", -40, label=" ")])
        assert pipeline.display_lines(readings) == ["office  (-40 dBm)  ≈ 1.00 m", "b  (-40 dBm)  ≈ 1.00 m"]
        assert readings[0].as_tuple() == ("office", -40, pytest.approx(1.0))

    def test_empty_cycle_message(self) -> None:
        assert RangingPipeline.display_lines([]) == [NO_SIGNAL_MESSAGE]

    def test_order_preserved(self, wall_model: PathLossParams) -> None:
        pipeline = RangingPipeline(wall_model, min_rssi=None)
        ids = ["c", "a", "b", "a"]
        readings = pipeline.process_cycle([make_sample(i, -50) for i in ids])
        assert [r.emitter_id for r in readings] == ids
