"""
Tests for the row partitioner: row identity, membership, active row, persistence.
"""

import math
import sys
import time
from pathlib import Path

import pytest

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def box(element_id, x=0, y=0, width=40, height=30):
    return {"id": element_id, "x": x, "y": y, "width": width, "height": height}


class TestRowForY:
    """Tests for vertical position -> row lookup."""

    def test_row_band_is_constant(self):
        """Test that every y inside a 384px band maps to the same row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)

        for y in (384, 400, 500.5, 767.999):
            assert rows.row_for_y(y).id == "row-1"

    def test_boundary_belongs_to_next_row(self):
        """Test that y=384 starts row 1 rather than ending row 0."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)

        assert rows.row_for_y(383.9).id == "row-0"
        assert rows.row_for_y(384).id == "row-1"

    def test_row_geometry(self):
        """Test yStart/yEnd of a lazily created row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)
        row = rows.row_for_y(2000)

        assert row.index == 5
        assert row.y_start == 1920
        assert row.y_end == 2304

    def test_rows_created_lazily(self):
        """Test that rows only exist once a coordinate maps into them."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        assert len(rows) == 0

        rows.row_for_y(100)
        rows.row_for_y(200)

        assert len(rows) == 1
        assert "row-0" in rows

    def test_non_finite_input_returns_none(self, caplog):
        """Test that NaN and infinities return None with a warning, not an exception."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()

        with caplog.at_level("WARNING"):
            assert rows.row_for_y(math.nan) is None
            assert rows.row_for_y(math.inf) is None
            assert rows.row_for_y(-math.inf) is None
            assert rows.row_for_y("12") is None

        assert "Invalid Y coordinate" in caplog.text
        assert len(rows) == 0

    def test_negative_y_maps_to_first_row(self):
        """Test that coordinates above the canvas origin clamp to row 0."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()

        assert rows.row_for_y(-50).id == "row-0"


class TestAssignElement:
    """Tests for element assignment and cross-row moves."""

    def test_assign_by_vertical_center(self):
        """Test that the vertical center decides the row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)

        # Spans both rows, center at y=390
        row_id = rows.assign_element(box("e1", y=300, height=180))

        assert row_id == "row-1"
        assert "e1" in rows.get_row("row-1").element_ids

    def test_polyline_element(self):
        """Test that polyline elements use their point extent."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)
        row_id = rows.assign_element({"id": "s1", "xs": [10, 50, 90], "ys": [800, 850, 820]})

        assert row_id == "row-2"

    def test_reassign_is_idempotent(self):
        """Test that assigning an unchanged element twice changes nothing."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        element = box("e1", y=10)

        first = rows.assign_element(element)
        second = rows.assign_element(element)

        assert first == second
        assert len(rows.get_row(first).element_ids) == 1
        assert rows.element_to_row == {"e1": first}

    def test_cross_row_move(self):
        """Test that moving an element's center removes it from the old row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)
        rows.assign_element(box("e1", y=10))
        rows.assign_element(box("e1", y=800))

        assert "e1" not in rows.get_row("row-0").element_ids
        assert "e1" in rows.get_row("row-2").element_ids
        assert rows.element_to_row["e1"] == "row-2"

    def test_assignment_resets_status(self):
        """Test that content changes make the row's recognition stale."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.models import OCRStatus

        rows = RowPartitioner()
        row_id = rows.assign_element(box("e1"))
        rows.update_row(row_id, ocr_status=OCRStatus.COMPLETE, transcribed_latex="x")

        rows.assign_element(box("e2", x=100))

        assert rows.get_row(row_id).ocr_status is OCRStatus.PENDING

    def test_move_updates_both_rows(self):
        """Test that both rows of a move get a new last_modified and revision."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.assign_element(box("e1", y=10))
        old_stamp = rows.get_row("row-0").last_modified
        old_revision = rows.content_revision("row-0")
        time.sleep(0.01)

        rows.assign_element(box("e1", y=400))

        assert rows.get_row("row-0").last_modified > old_stamp
        assert rows.content_revision("row-0") == old_revision + 1
        assert rows.content_revision("row-1") == 1

    def test_missing_id_raises(self):
        """Test that a missing identity is a hard error."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.utils.errors import InvalidElementError

        rows = RowPartitioner()

        with pytest.raises(InvalidElementError):
            rows.assign_element({"x": 0, "y": 0, "width": 10, "height": 10})
        with pytest.raises(InvalidElementError):
            rows.assign_element({"id": "", "x": 0, "y": 0})
        with pytest.raises(InvalidElementError):
            rows.assign_element(None)

    def test_non_finite_geometry_is_clamped(self, caplog):
        """Test that extreme coordinates are clamped instead of dropped."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384, canvas_max_y=3840)

        with caplog.at_level("WARNING"):
            low = rows.assign_element({"id": "nan", "x": 0, "y": math.nan, "height": 10})
            high = rows.assign_element({"id": "inf", "x": 0, "y": math.inf, "height": 10})
        far = rows.assign_element(box("far", y=1e12))

        assert low == "row-0"
        assert high == "row-10"
        assert far == "row-10"
        assert "clamping" in caplog.text

    def test_many_rows_assignment_is_fast(self):
        """Test that assignment cost does not grow with row count."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        for i in range(2000):
            rows.assign_element(box(f"e{i}", y=i * 384 + 10))

        start = time.perf_counter()
        rows.assign_element(box("late", y=1000 * 384 + 5))
        elapsed_ms = (time.perf_counter() - start) * 1000

        assert len(rows) == 2000
        assert elapsed_ms < 16


class TestRemoveElement:
    """Tests for element removal."""

    def test_remove(self):
        """Test that removal clears membership and the index."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.assign_element(box("e1"))

        assert rows.remove_element("e1") == "row-0"
        assert rows.get_row("row-0").is_empty
        assert "e1" not in rows.element_to_row

    def test_remove_unknown_is_noop(self, caplog):
        """Test that removing an unknown id warns and returns None."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()

        with caplog.at_level("WARNING"):
            assert rows.remove_element("ghost") is None
            assert rows.remove_element("ghost") is None

        assert "unknown element" in caplog.text

    def test_rows_are_never_deleted(self):
        """Test that emptying a row keeps it around."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.assign_element(box("e1"))
        rows.remove_element("e1")

        assert "row-0" in rows


class TestActiveRow:
    """Tests for the single active row and its timeline."""

    def test_activation_sequence(self):
        """Test A -> B -> C leaves only C active with a 3-entry timeline."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        for y in (10, 400, 800):
            rows.row_for_y(y)

        for row_id in ("row-0", "row-1", "row-2"):
            rows.set_active_row(row_id)

        active = [r.id for r in rows.all_rows() if r.is_active]
        timeline = rows.activation_timeline()

        assert active == ["row-2"]
        assert rows.active_row_id == "row-2"
        assert [e.row_id for e in timeline] == ["row-0", "row-1", "row-2"]
        assert timeline[0].deactivated_at is not None
        assert timeline[1].deactivated_at is not None
        assert timeline[2].deactivated_at is None

    def test_activation_stamps_time(self):
        """Test that the row and its timeline entry share one activation timestamp."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(0)
        row = rows.set_active_row("row-0")

        assert row.is_active is True
        assert isinstance(row.activated_at, float)
        assert row.activated_at == rows.activation_timeline()[-1].activated_at

    def test_reactivating_active_row_is_noop(self):
        """Test that activating the current row adds no timeline entry."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(0)
        rows.set_active_row("row-0")
        rows.set_active_row("row-0")

        assert len(rows.activation_timeline()) == 1

    def test_unknown_row_raises(self):
        """Test that activating a missing row is an error."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.utils.errors import RowNotFoundError

        rows = RowPartitioner()

        with pytest.raises(RowNotFoundError):
            rows.set_active_row("row-7")

    def test_malformed_row_id_raises(self):
        """Test that malformed ids are rejected."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.utils.errors import InvalidRowIdError

        rows = RowPartitioner()

        for bad in ("7", "row-", "row-x", None, 7):
            with pytest.raises(InvalidRowIdError):
                rows.set_active_row(bad)

    def test_update_row_cannot_bypass_single_active(self):
        """Test that is_active changes through update_row keep one active row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(0)
        rows.row_for_y(400)

        rows.update_row("row-0", is_active=True)
        rows.update_row("row-1", is_active=True)

        assert rows.get_row("row-0").is_active is False
        assert rows.get_row("row-1").is_active is True
        assert len(rows.activation_timeline()) == 2

        rows.update_row("row-1", is_active=False)
        assert rows.active_row is None
        assert rows.activation_timeline()[-1].deactivated_at is not None

    def test_update_row_rejects_unknown_fields(self):
        """Test that only row metadata can be updated."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(0)

        with pytest.raises(ValueError):
            rows.update_row("row-0", y_start=99)

    def test_timeline_is_a_copy(self):
        """Test that callers cannot mutate the stored timeline."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(0)
        rows.set_active_row("row-0")

        rows.activation_timeline().clear()

        assert len(rows.activation_timeline()) == 1

    def test_create_new_row_below_active(self):
        """Test that new rows are created directly below the active row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(400)
        rows.set_active_row("row-1")

        assert rows.create_new_row() == "row-2"

    def test_create_new_row_without_active(self):
        """Test that without an active row the new row goes below the last one."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        assert rows.create_new_row() == "row-0"

        rows.row_for_y(1200)
        assert rows.create_new_row() == "row-4"

    def test_is_element_in_active_row(self):
        """Test the active-row overlap check."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)

        # No active row: everything counts
        assert rows.is_element_in_active_row(box("e1", y=900))

        rows.row_for_y(10)
        rows.set_active_row("row-0")

        assert rows.is_element_in_active_row(box("e1", y=100))
        assert rows.is_element_in_active_row(box("e2", y=370, height=30))
        assert not rows.is_element_in_active_row(box("e3", y=900))


class TestViewport:
    """Tests for viewport queries."""

    def test_rows_in_viewport(self):
        """Test that only rows intersecting the viewport are returned, in order."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner(row_height=384)
        for y in (10, 400, 800, 1200, 5000):
            rows.row_for_y(y)

        visible = rows.rows_in_viewport({"y": 500, "height": 600})

        assert [r.id for r in visible] == ["row-1", "row-2"]

    def test_viewport_accepts_objects(self):
        """Test that any object with y and height works."""
        from types import SimpleNamespace
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(10)

        visible = rows.rows_in_viewport(SimpleNamespace(y=0, height=100))

        assert [r.id for r in visible] == ["row-0"]

    def test_huge_viewport_scans_existing_rows(self):
        """Test that a viewport wider than the row count still works."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(10)
        rows.row_for_y(4000)

        visible = rows.rows_in_viewport({"y": 0, "height": 1e9})

        assert [r.id for r in visible] == ["row-0", "row-10"]

    def test_invalid_viewport(self, caplog):
        """Test that bad viewports return [] with a warning."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(10)

        with caplog.at_level("WARNING"):
            for bad in (None, {}, {"y": "a", "height": 10}, {"y": 0, "height": -5},
                        {"y": math.nan, "height": 10}):
                assert rows.rows_in_viewport(bad) == []

        assert "Invalid viewport" in caplog.text

    def test_overflowing_viewport(self, caplog):
        """Test that finite bounds whose sum overflows are rejected without raising."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.row_for_y(10)

        with caplog.at_level("WARNING"):
            assert rows.rows_in_viewport({"y": 1e308, "height": 1e308}) == []

        assert "Invalid viewport" in caplog.text


class TestSerialization:
    """Tests for state serialization."""

    def _populated(self):
        from rowscribe.rows import RowPartitioner
        from rowscribe.models import OCRStatus

        rows = RowPartitioner()
        rows.assign_element(box("a", y=10))
        rows.assign_element(box("b", x=100, y=20))
        rows.assign_element(box("c", y=800))
        rows.update_row("row-0", ocr_status=OCRStatus.COMPLETE, transcribed_latex="x + 1")
        rows.set_active_row("row-0")
        rows.set_active_row("row-2")
        return rows

    def test_serialized_shape(self):
        """Test the canonical stored shape."""
        rows = self._populated()
        state = rows.serialize()

        assert set(state) == {
            "rowHeight", "startY", "rows", "elementToRow", "activeRowId", "activationTimeline",
        }
        assert state["rows"][0]["elementIds"] == ["a", "b"]
        assert state["elementToRow"] == {"a": "row-0", "b": "row-0", "c": "row-2"}
        assert state["activeRowId"] == "row-2"

    def test_round_trip(self):
        """Test that deserialize(serialize(x)) reproduces the state."""
        import json
        from rowscribe.rows import RowPartitioner
        from rowscribe.models import OCRStatus

        rows = self._populated()
        state = json.loads(json.dumps(rows.serialize()))

        restored = RowPartitioner.from_state(state)

        assert restored.serialize() == rows.serialize()
        assert restored.get_row("row-0").element_ids == {"a", "b"}
        assert restored.get_row("row-0").ocr_status is OCRStatus.COMPLETE
        assert restored.active_row_id == "row-2"
        assert len(restored.activation_timeline()) == 2

    def test_restored_partitioner_keeps_working(self):
        """Test that lookups and moves work after a restore."""
        from rowscribe.rows import RowPartitioner

        restored = RowPartitioner.from_state(self._populated().serialize())
        restored.assign_element(box("a", y=800))

        assert restored.element_to_row["a"] == "row-2"
        assert "a" not in restored.get_row("row-0").element_ids

    def test_legacy_state(self):
        """Test that states without active-row fields restore with no active row."""
        from rowscribe.rows import RowPartitioner

        legacy = {
            "rowHeight": 384,
            "startY": 0,
            "rows": [
                {
                    "id": "row-0",
                    "yStart": 0,
                    "yEnd": 384,
                    "elementIds": ["a"],
                    "ocrStatus": "completed",
                    "transcribedLatex": "y = 2",
                },
            ],
            "elementToRow": {"a": "row-0"},
        }

        rows = RowPartitioner.from_state(legacy)

        assert rows.active_row_id is None
        assert rows.activation_timeline() == []
        assert rows.get_row("row-0").element_ids == {"a"}
        assert rows.get_row("row-0").transcribed_latex == "y = 2"

    def test_interrupted_pass_is_pending_after_restore(self):
        """Test that rows saved mid-recognition, the active one included, restore as pending."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.models import OCRStatus

        rows = self._populated()
        rows.update_row("row-0", ocr_status=OCRStatus.PROCESSING)
        rows.update_row("row-2", ocr_status=OCRStatus.PROCESSING)

        restored = RowPartitioner.from_state(rows.serialize())

        assert restored.active_row_id == "row-2"
        assert restored.get_row("row-2").ocr_status is OCRStatus.PENDING
        assert restored.get_row("row-0").ocr_status is OCRStatus.PENDING

    def test_missing_active_row_closes_its_timeline_entry(self):
        """Test that clearing an unknown saved active row also closes its open entry."""
        from rowscribe.rows import RowPartitioner

        state = {
            "rows": [{"id": "row-0", "yStart": 0, "yEnd": 384, "elementIds": []}],
            "activeRowId": "row-5",
            "activationTimeline": [
                {"rowId": "row-0", "activatedAt": 10.0, "deactivatedAt": 20.0},
                {"rowId": "row-5", "activatedAt": 20.0, "deactivatedAt": None},
            ],
        }

        rows = RowPartitioner.from_state(state)
        timeline = rows.activation_timeline()

        assert rows.active_row_id is None
        assert all(not entry.is_open for entry in timeline)
        assert timeline[0].deactivated_at == 20.0

    def test_only_active_row_entry_stays_open(self):
        """Test that stray open entries close when the next activation began."""
        from rowscribe.rows import RowPartitioner

        state = {
            "rows": [
                {"id": "row-0", "yStart": 0, "yEnd": 384},
                {"id": "row-1", "yStart": 384, "yEnd": 768},
            ],
            "activeRowId": "row-1",
            "activationTimeline": [
                {"rowId": "row-0", "activatedAt": 10.0, "deactivatedAt": None},
                {"rowId": "row-1", "activatedAt": 15.0, "deactivatedAt": None},
            ],
        }

        rows = RowPartitioner.from_state(state)
        timeline = rows.activation_timeline()

        assert timeline[0].deactivated_at == 15.0
        assert [e.row_id for e in timeline if e.is_open] == ["row-1"]

        rows.set_active_row("row-0")
        assert [e.row_id for e in rows.activation_timeline() if e.is_open] == ["row-0"]

    def test_duplicate_membership_is_repaired(self):
        """Test that an element listed in two rows ends up in one."""
        from rowscribe.rows import RowPartitioner

        state = {
            "rows": [
                {"id": "row-0", "yStart": 0, "yEnd": 384, "elementIds": ["a"]},
                {"id": "row-1", "yStart": 384, "yEnd": 768, "elementIds": ["a"]},
            ],
            "elementToRow": {"a": "row-1"},
        }

        rows = RowPartitioner.from_state(state)

        assert rows.element_to_row == {"a": "row-1"}
        assert rows.get_row("row-0").is_empty

    def test_corrupt_state_raises(self):
        """Test that non-mapping states and broken rows raise StateRestoreError."""
        from rowscribe.rows import RowPartitioner
        from rowscribe.utils.errors import StateRestoreError

        rows = RowPartitioner()

        with pytest.raises(StateRestoreError):
            rows.deserialize([1, 2, 3])
        with pytest.raises(StateRestoreError):
            rows.deserialize({"rows": [{"id": "bogus"}]})

    def test_restore_is_fast(self):
        """Test that a large state restores well under a second."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        for i in range(5000):
            rows.assign_element(box(f"e{i}", y=(i % 1000) * 384 + 10))
        state = rows.serialize()

        start = time.perf_counter()
        RowPartitioner.from_state(state)

        assert time.perf_counter() - start < 1.0


class TestApplyChanges:
    """Tests for batched changes."""

    def test_affected_rows(self):
        """Test that moves report both the old and new row."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()
        rows.assign_element(box("a", y=10))
        rows.assign_element(box("b", y=400))

        affected = rows.apply_changes(changed=[box("a", y=800)], removed=["b"])

        assert affected == {"row-0", "row-1", "row-2"}

    def test_snapshot_without_id_does_not_split_batch(self, caplog):
        """Test that an id-less snapshot is skipped while the rest of the batch applies."""
        from rowscribe.rows import RowPartitioner

        rows = RowPartitioner()

        with caplog.at_level("WARNING"):
            affected = rows.apply_changes(changed=[
                box("a", y=10),
                {"x": 0, "y": 400, "width": 5, "height": 5},
                box("c", y=800),
            ])

        assert affected == {"row-0", "row-2"}
        assert rows.element_to_row == {"a": "row-0", "c": "row-2"}
        assert "without an id" in caplog.text
