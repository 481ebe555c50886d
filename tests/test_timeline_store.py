"""Tests for the timeline store: edits, overlap policy, history, transient edits."""

from __future__ import annotations

import random

import pytest

from fastcut.models.element import Element, ElementKind
from fastcut.models.errors import EditRejected
from fastcut.models.track import TrackKind
from fastcut.services import timeline_ops as ops
from fastcut.services.timeline_ops import Move, OverlapPolicy
from fastcut.services.timeline_store import TimelineStore


def _spans(doc, track_id="v1"):
    return [(e.element_id, e.start_ms, e.end_ms) for e in doc.get_track(track_id)]


def _assert_no_overlaps(doc):
    for track in doc.tracks:
        elems = list(track)
        for a, b in zip(elems, elems[1:]):
            assert a.end_ms <= b.start_ms, f"{a.element_id} overlaps {b.element_id}"


class TestMoveOverlap:
    def test_move_onto_neighbour_rejected(self, store, doc_ab):
        with pytest.raises(EditRejected) as exc:
            store.move_element("v1", "B", "v1", 2000)
        assert exc.value.conflicts == ("A",)
        assert store.document is doc_ab
        assert not store.can_undo()

    def test_overwrite_override_truncates(self, store):
        store.move_element("v1", "B", "v1", 2000, override=True)
        assert _spans(store.document) == [("A", 0, 2000), ("B", 2000, 7000)]
        a = store.document.find_element("A")
        assert a.trim_out_ms == 3000

    def test_overwrite_splits_when_inside(self, store, make_video):
        store.add_element("v1", make_video("C", 20000, 1000))
        store.move_element("v1", "C", "v1", 1000, override=True)
        spans = _spans(store.document)
        assert spans[0] == ("A", 0, 1000)
        assert spans[1] == ("C", 1000, 2000)
        tail_id, tail_start, tail_end = spans[2]
        assert tail_id not in ("A", "B", "C")
        assert (tail_start, tail_end) == (2000, 5000)
        assert store.document.find_element(tail_id).trim_in_ms == 2000

    def test_ripple_override_pushes_right(self, doc_ab, make_video):
        store = TimelineStore(doc_ab, overlap_policy=OverlapPolicy.RIPPLE)
        store.add_element("v1", make_video("C", 2000, 1000), override=True)
        spans = _spans(store.document)
        assert spans[0] == ("A", 0, 2000)
        assert spans[1] == ("C", 2000, 3000)
        assert spans[2][1:] == (3000, 6000)
        assert spans[3] == ("B", 6000, 11000)
        _assert_no_overlaps(store.document)

    def test_move_to_other_track(self, store, doc_ab):
        v2_id = store.add_track(TrackKind.VIDEO, track_id="v2")
        store.move_element("v1", "B", v2_id, 0)
        assert store.document.get_track("v2")[0].element_id == "B"
        assert store.document.get_track("v2")[0].track_id == "v2"
        assert [e.element_id for e in store.document.get_track("v1")] == ["A"]

    def test_move_onto_wrong_track_kind(self, store):
        with pytest.raises(EditRejected):
            store.move_element("v1", "B", "a1", 0)

    def test_move_in_place_records_nothing(self, store, doc_ab):
        store.move_element("v1", "B", "v1", 5000)
        assert store.document is doc_ab
        assert not store.can_undo()
        unchanged = ops.move_elements(doc_ab, [Move("v1", "A", "v1", 0), Move("v1", "B", "v1", 5000)])
        assert unchanged is doc_ab

    def test_move_in_place_still_checks_ids(self, store):
        with pytest.raises(EditRejected):
            store.move_element("v1", "ghost", "v1", 0)

    def test_group_move_keeps_relative_offsets(self, doc_ab):
        moved = ops.move_elements(doc_ab, [Move("v1", "A", "v1", 1000), Move("v1", "B", "v1", 6000)])
        assert _spans(moved) == [("A", 1000, 6000), ("B", 6000, 11000)]


class TestEdits:
    def test_add_element_returns_id(self, store, make_audio):
        element_id = store.add_element("a1", make_audio("", 0, 1000))
        assert element_id
        assert store.document.find_element(element_id).track_id == "a1"

    def test_add_duplicate_id_rejected(self, store, make_video):
        with pytest.raises(EditRejected):
            store.add_element("v1", make_video("A", 20000, 100))

    def test_add_invalid_bounds(self, store, make_video):
        with pytest.raises(EditRejected):
            store.add_element("v1", make_video("C", 20000, 1000, trim_in_ms=1000))

    def test_remove(self, store):
        store.remove_element("v1", "A")
        assert store.document.find_element("A") is None
        with pytest.raises(EditRejected):
            store.remove_element("v1", "A")

    def test_split_is_contiguous(self, store):
        left, right = store.split_element("v1", "A", 2000)
        doc = store.document
        l, r = doc.find_element(left), doc.find_element(right)
        assert left == "A"
        assert (l.start_ms, l.end_ms) == (0, 2000)
        assert (r.start_ms, r.end_ms) == (2000, 5000)
        assert r.trim_in_ms == 2000
        assert l.trim_out_ms == 3000

    @pytest.mark.parametrize("at", [0, 5000, 7000, -1])
    def test_split_outside_visible_span(self, store, at):
        with pytest.raises(EditRejected):
            store.split_element("v1", "A", at)

    def test_trim_keeps_media_anchored(self, store):
        store.trim_element("v1", "B", 1000, 500)
        b = store.document.find_element("B")
        assert (b.start_ms, b.end_ms) == (6000, 9500)
        assert b.source_time_ms(6000) == 1000

    def test_trim_extending_into_neighbour_rejected(self, store):
        store.trim_element("v1", "A", 0, 2000)
        store.move_element("v1", "B", "v1", 3000)
        with pytest.raises(EditRejected) as exc:
            store.trim_element("v1", "A", 0, 0)
        assert exc.value.conflicts == ("B",)

    def test_update_properties(self, store):
        store.update_element_properties("v1", "A", {"opacity": 0.5})
        assert store.document.find_element("A").opacity == 0.5
        with pytest.raises(EditRejected):
            store.update_element_properties("v1", "A", {"text": "nope"})

    def test_locked_track_rejects_edits(self, store):
        store.set_track_flags("v1", locked=True)
        with pytest.raises(EditRejected):
            store.remove_element("v1", "A")
        store.set_track_flags("v1", locked=False)
        store.remove_element("v1", "A")

    def test_ripple_delete_closes_gap(self, store):
        store.ripple_delete("v1", "A")
        assert _spans(store.document) == [("B", 0, 5000)]

    def test_tracks_and_markers(self, store):
        track_id = store.add_track(TrackKind.TEXT, name="Titles", index=0)
        assert store.document.tracks[0].track_id == track_id
        store.add_marker(1500)
        assert store.document.markers == (1500,)
        store.remove_marker(1500)
        store.remove_track(track_id)
        assert store.document.get_track(track_id) is None
        with pytest.raises(EditRejected):
            store.remove_marker(1500)


class TestHistory:
    def test_each_edit_one_entry(self, store):
        store.move_element("v1", "B", "v1", 6000)
        store.split_element("v1", "A", 1000)
        assert store.undo_count == 2

    def test_undo_redo_restores_exact_documents(self, store, doc_ab):
        store.move_element("v1", "B", "v1", 6000)
        after = store.document
        assert store.undo() is doc_ab
        assert store.redo() is after

    def test_underflow_returns_none(self, store, doc_ab):
        assert store.undo() is None
        assert store.redo() is None
        assert store.document is doc_ab

    def test_history_depth_bounded(self, doc_ab):
        store = TimelineStore(doc_ab, history_depth=3)
        for i in range(5):
            store.add_marker(i + 1)
        undone = 0
        while store.undo() is not None:
            undone += 1
        assert undone == 3
        assert store.document.markers == (1, 2)

    def test_new_edit_discards_redo(self, store):
        store.add_marker(1)
        store.undo()
        store.add_marker(2)
        assert store.redo() is None

    def test_structural_sharing(self, store, doc_ab):
        store.move_element("v1", "B", "v1", 6000)
        assert store.document.get_track("a1") is doc_ab.get_track("a1")
        assert store.document.find_element("A") is doc_ab.find_element("A")

    def test_random_edits_never_overlap(self, doc_ab):
        rng = random.Random(7)
        store = TimelineStore(doc_ab)
        states = [store.document]
        for i in range(200):
            ids = [e.element_id for e in store.document.get_track("v1")]
            op = rng.choice(["move", "add", "split", "remove", "trim"])
            try:
                if op == "add" or not ids:
                    store.add_element("v1", Element(f"n{i}", "v1", ElementKind.VIDEO,
                                                    rng.randrange(0, 30000), rng.randrange(100, 5000),
                                                    media_id="m"), override=rng.random() < 0.3)
                elif op == "move":
                    store.move_element("v1", rng.choice(ids), "v1", rng.randrange(0, 30000),
                                       override=rng.random() < 0.3)
                elif op == "split":
                    e = store.document.find_element(rng.choice(ids))
                    store.split_element("v1", e.element_id, rng.randrange(e.start_ms, e.end_ms + 1))
                elif op == "remove":
                    store.remove_element("v1", rng.choice(ids))
                else:
                    e = store.document.find_element(rng.choice(ids))
                    store.trim_element("v1", e.element_id, rng.randrange(0, 500), rng.randrange(0, 500))
            except EditRejected:
                pass
            _assert_no_overlaps(store.document)
            if store.document is not states[-1]:
                states.append(store.document)
        # Undo walks back through exactly the recorded states.
        for expected in reversed(states[:-1][-100:]):
            assert store.undo() is expected


class TestTransientEdits:
    def test_updates_do_not_touch_history(self, store, doc_ab):
        store.begin_transient_edit()
        for start in range(5500, 9000, 100):
            store.update_transient(lambda base, s=start: ops.move_element(base, "v1", "B", "v1", s))
        assert store.undo_count == 0
        assert store.commit_transient_edit("Move") is True
        assert store.undo_count == 1
        assert store.document.find_element("B").start_ms == 8900
        assert store.undo() is doc_ab

    def test_cancel_restores_base(self, store, doc_ab):
        store.begin_transient_edit()
        store.update_transient(lambda base: ops.move_element(base, "v1", "B", "v1", 7000))
        store.cancel_transient_edit()
        assert store.document is doc_ab
        assert not store.can_undo()

    def test_unchanged_commit_pushes_nothing(self, store):
        store.begin_transient_edit()
        assert store.commit_transient_edit() is False
        assert store.undo_count == 0

    def test_nested_begin_rejected(self, store):
        store.begin_transient_edit()
        with pytest.raises(RuntimeError):
            store.begin_transient_edit()

    def test_undo_cancels_open_edit(self, store, doc_ab):
        store.add_marker(5)
        store.begin_transient_edit()
        store.update_transient(lambda base: ops.move_element(base, "v1", "B", "v1", 7000))
        assert store.undo() is doc_ab
        assert not store.in_transient_edit

    def test_implicit_cancel_is_announced(self, store, qtbot):
        store.add_marker(5)
        store.begin_transient_edit()
        with qtbot.waitSignal(store.transient_cancelled, timeout=1000):
            store.undo()
        store.begin_transient_edit()
        with qtbot.waitSignal(store.transient_cancelled, timeout=1000):
            store.redo()

    def test_no_cancel_signal_without_open_edit(self, store):
        fired = []
        store.transient_cancelled.connect(lambda: fired.append(True))
        store.add_marker(5)
        store.undo()
        store.cancel_transient_edit()
        store.begin_transient_edit()
        store.commit_transient_edit()
        assert fired == []


class TestNotifications:
    def test_document_changed_signal(self, store, qtbot):
        with qtbot.waitSignal(store.document_changed, timeout=1000) as blocker:
            store.add_marker(10)
        assert blocker.args[0] is store.document

    def test_track_subscription_only_for_changed_track(self, store):
        v1_calls, a1_calls = [], []
        store.subscribe_track("v1", v1_calls.append)
        store.subscribe_track("a1", a1_calls.append)
        store.move_element("v1", "B", "v1", 6000)
        assert len(v1_calls) == 1
        assert a1_calls == []
        assert v1_calls[0] is store.document.get_track("v1")

    def test_element_subscription(self, store):
        calls = []
        callback = calls.append
        store.subscribe_element("A", callback)
        store.move_element("v1", "B", "v1", 6000)
        assert calls == []
        store.update_element_properties("v1", "A", {"opacity": 0.3})
        assert calls[0].opacity == 0.3
        store.unsubscribe(callback)
        store.update_element_properties("v1", "A", {"opacity": 0.4})
        assert len(calls) == 1
