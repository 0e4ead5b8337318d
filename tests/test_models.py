"""Tests for data model helpers."""

from __future__ import annotations

from rssi_ranger.models import DistanceReading, ReadingStatus, ScanBatch, SignalSample


class TestScanBatchParse:
    """Scanner payload: id,rssi,freq[,label];...;scanner_id"""

    def test_parse(self) -> None:
        batch = ScanBatch.parse("AA:BB:CC:DD:EE:01,-52,2412,office;AA:BB:CC:DD:EE:02,-70,5180;scanner-1")
        assert batch is not None
        assert batch.scanner_id == "scanner-1"
        assert len(batch) == 2
        assert batch[0] == SignalSample("AA:BB:CC:DD:EE:01", -52, 2412, "office")
        assert batch[1].label is None
        assert batch[1].display_name == "AA:BB:CC:DD:EE:02"

    def test_label_may_contain_commas(self) -> None:
        batch = ScanBatch.parse("id1,-50,2437,Cafe, 2nd floor;scanner")
        assert batch[0].label == "Cafe, 2nd floor"

    def test_malformed_items_skipped(self) -> None:
        batch = ScanBatch.parse("id1,-50;id2,abc,2412;,-50,2412;id3,-61,2412;scanner")
        assert [s.emitter_id for s in batch] == ["id3"]

    def test_too_few_parts(self) -> None:
        assert ScanBatch.parse("scanner-only") is None

    def test_empty_batch(self) -> None:
        batch = ScanBatch.parse("garbage;scanner")
        assert batch is not None
        assert batch.is_empty


class TestDistanceReading:
    """Output record handed to the display."""

    def test_to_dict(self) -> None:
        reading = DistanceReading("id1", "office", -50, raw_distance=1.7, distance=1.6)
        d = reading.to_dict()
        assert d["status"] == "ok"
        assert d["distance"] == 1.6
        assert reading.as_tuple() == ("office", -50, 1.6)

    def test_mark_unavailable(self) -> None:
        reading = DistanceReading("id1", "id1", -50, raw_distance=1.7, distance=1.6)
        reading.mark_unavailable("boom")
        assert reading.status is ReadingStatus.UNAVAILABLE
        assert not reading.available
        assert reading.as_tuple() == ("id1", -50, None)
        assert reading.to_dict()["message"] == "boom"
