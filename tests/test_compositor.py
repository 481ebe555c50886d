"""Tests for the frame compositor."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np

from fastcut.models.document import TimelineDocument
from fastcut.models.element import Element, ElementKind, Transform
from fastcut.models.track import Track, TrackKind
from fastcut.services.compositor import Compositor, placeholder_frame, render_text


def _two_layers(make_video, opacity=0.5):
    top = Track("top", TrackKind.VIDEO, (make_video("R", 0, 1000, track_id="top", media_id="red",
                                                    opacity=opacity),))
    bottom = Track("bottom", TrackKind.VIDEO, (make_video("Bl", 0, 1000, track_id="bottom",
                                                          media_id="blue"),))
    return TimelineDocument(tracks=(top, bottom))


class TestCompositor:
    def test_render_is_idempotent_and_cached(self, cache, fake_decoder, doc_ab):
        comp = Compositor(cache, 8, 6)
        first = comp.render_frame(doc_ab, 1000)
        second = comp.render_frame(doc_ab, 1000)
        assert np.array_equal(first, second)
        assert fake_decoder.frame_calls == 1
        assert first.shape == (6, 8, 4)
        assert (first[0, 0] == [255, 255, 255, 255]).all()

    def test_gap_is_opaque_black(self, cache, doc_ab):
        comp = Compositor(cache, 8, 6)
        frame = comp.render_frame(doc_ab, 20000)
        assert (frame[..., :3] == 0).all()
        assert (frame[..., 3] == 255).all()

    def test_top_track_blends_over_bottom(self, cache, fake_decoder, make_video):
        fake_decoder.colors["red"] = (255, 0, 0, 255)
        fake_decoder.colors["blue"] = (0, 0, 255, 255)
        comp = Compositor(cache, 8, 6)
        frame = comp.render_frame(_two_layers(make_video), 500)
        assert tuple(frame[3, 3]) == (128, 0, 128, 255)

    def test_opaque_top_hides_bottom(self, cache, fake_decoder, make_video):
        fake_decoder.colors["red"] = (255, 0, 0, 255)
        fake_decoder.colors["blue"] = (0, 0, 255, 255)
        frame = Compositor(cache, 8, 6).render_frame(_two_layers(make_video, opacity=1.0), 500)
        assert tuple(frame[0, 0]) == (255, 0, 0, 255)

    def test_muted_track_still_visible(self, cache, fake_decoder, make_video):
        fake_decoder.colors["red"] = (200, 10, 10, 255)
        fake_decoder.colors["blue"] = (0, 0, 255, 255)
        doc = _two_layers(make_video, opacity=1.0)
        doc = doc.with_track(doc.get_track("top").with_flags(muted=True))
        frame = Compositor(cache, 8, 6).render_frame(doc, 100)
        assert tuple(frame[0, 0]) == (200, 10, 10, 255)

    def test_hidden_track_skipped(self, cache, fake_decoder, make_video):
        fake_decoder.colors["red"] = (255, 0, 0, 255)
        fake_decoder.colors["blue"] = (0, 0, 255, 255)
        doc = _two_layers(make_video, opacity=1.0)
        doc = doc.with_track(doc.get_track("top").with_flags(hidden=True))
        frame = Compositor(cache, 8, 6).render_frame(doc, 500)
        assert tuple(frame[0, 0]) == (0, 0, 255, 255)

    def test_decode_failure_renders_placeholder(self, cache, fake_decoder, doc_ab):
        fake_decoder.failing.add("m1")
        comp = Compositor(cache, 8, 6)
        frame = comp.render_frame(doc_ab, 100)
        assert tuple(frame[0, 0]) == (255, 0, 255, 255)
        assert comp.decode_failures == 1

    def test_transform_offset_and_scale(self, cache, make_video):
        moved = make_video("A", 0, 1000, transform=Transform(x=4, y=0))
        doc = TimelineDocument(tracks=(Track("v1", TrackKind.VIDEO, (moved,)),))
        frame = Compositor(cache, 8, 6).render_frame(doc, 0)
        assert (frame[:, :4, :3] == 0).all()
        assert (frame[:, 4:, :3] == 255).all()

        scaled = make_video("A", 0, 1000, transform=Transform(scale=0.5))
        doc = TimelineDocument(tracks=(Track("v1", TrackKind.VIDEO, (scaled,)),))
        frame = Compositor(cache, 8, 6).render_frame(doc, 0)
        assert tuple(frame[0, 0, :3]) == (255, 255, 255)
        assert tuple(frame[5, 7, :3]) == (0, 0, 0)

    def test_image_uses_single_frame(self, cache, fake_decoder):
        img = Element("i", "v1", ElementKind.IMAGE, 0, 5000, media_id="logo")
        doc = TimelineDocument(tracks=(Track("v1", TrackKind.VIDEO, (img,)),))
        comp = Compositor(cache, 8, 6)
        comp.render_frame(doc, 100)
        comp.render_frame(doc, 4000)
        assert fake_decoder.frame_calls == 1

    def test_text_element_draws_pixels(self, cache):
        text = Element("t", "t1", ElementKind.TEXT, 0, 1000, text="Hello", font_size=40)
        doc = TimelineDocument(tracks=(Track("t1", TrackKind.TEXT, (text,)),))
        frame = Compositor(cache, 200, 100).render_frame(doc, 10)
        assert frame[..., :3].max() > 0

    def test_active_elements_bottom_first(self, cache, make_video):
        comp = Compositor(cache, 8, 6)
        active = comp.active_elements(_two_layers(make_video), 500)
        assert [e.element_id for _, e in active] == ["Bl", "R"]

    def test_active_elements_from_many_threads(self, cache, make_video):
        comp = Compositor(cache, 8, 6)
        doc = _two_layers(make_video)

        def lookup(ms):
            return [e.element_id for _, e in comp.active_elements(doc, ms % 1000)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lookup, range(2000)))
        assert all(r == ["Bl", "R"] for r in results)


def test_render_text_is_cached_and_read_only():
    a = render_text("Hi", 24, "#FF0000")
    assert render_text("Hi", 24, "#FF0000") is a
    assert not a.flags.writeable
    assert a.shape[2] == 4


def test_placeholder_checker():
    frame = placeholder_frame(64, 32)
    assert tuple(frame[0, 0]) == (255, 0, 255, 255)
    assert tuple(frame[0, 40]) == (0, 0, 0, 255)
