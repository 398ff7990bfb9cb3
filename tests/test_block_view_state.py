import config
from block_view_state import BlockViewState, CarouselState, FullscreenViewer, ViewStateStore, viewport_class


class TestViewport:
    def test_breakpoint(self):
        assert viewport_class(config.MOBILE_BREAKPOINT_PX - 1) == "mobile"
        assert viewport_class(config.MOBILE_BREAKPOINT_PX) == "desktop"
        assert viewport_class(None) == "desktop"


class TestCarouselState:
    def test_select_and_bounds(self):
        carousel = CarouselState()
        assert carousel.select(2, 3)
        assert not carousel.select(3, 3)
        assert not carousel.select(2, 3)
        assert not carousel.next(3)
        assert carousel.previous()
        assert carousel.index == 1

    def test_clamp_after_photos_removed(self):
        carousel = CarouselState(index=4)
        assert carousel.clamp(2) == 1
        assert carousel.clamp(0) == 0

    def test_swipe_left_advances(self):
        carousel = CarouselState()
        carousel.swipe_start(300)
        carousel.swipe_move(200)
        assert carousel.swipe_end(3)
        assert carousel.index == 1

    def test_swipe_right_goes_back(self):
        carousel = CarouselState(index=1)
        carousel.swipe_start(100)
        carousel.swipe_move(100 + config.SWIPE_THRESHOLD_PX + 1)
        assert carousel.swipe_end(3)
        assert carousel.index == 0

    def test_short_swipe_ignored(self):
        carousel = CarouselState()
        carousel.swipe_start(100)
        carousel.swipe_move(100 - config.SWIPE_THRESHOLD_PX)
        assert not carousel.swipe_end(3)
        assert carousel.index == 0

    def test_tap_without_move_ignored(self):
        carousel = CarouselState()
        carousel.swipe_start(100)
        assert not carousel.swipe_end(3)


class TestViewStateStore:
    def test_resize_reports_flips(self):
        store = ViewStateStore()
        store.get("a")
        store.get("b").sync_viewport(400)

        assert sorted(store.on_resize(400)) == ["a"]
        assert store.get("a").is_mobile
        assert store.on_resize(400) == []

    def test_prune(self):
        store = ViewStateStore()
        for block_id in ("a", "b", "c"):
            store.get(block_id)
        store.prune(["b"])
        assert "b" in store
        assert len(store) == 1

    def test_carousel_slots_are_independent(self):
        state = BlockViewState("a")
        state.carousel("main").index = 2
        assert state.carousel("column1").index == 0


class TestFullscreenViewer:
    def test_keyboard(self):
        viewer = FullscreenViewer()
        viewer.open(["a", "b", "c"], index=1)

        assert viewer.current_photo == "b"
        assert viewer.handle_key("ArrowRight")
        assert viewer.current_photo == "c"
        assert not viewer.handle_key("ArrowRight")
        assert viewer.handle_key("ArrowLeft")
        assert viewer.handle_key("Escape")
        assert not viewer.is_open
        assert viewer.current_photo is None

    def test_open_without_photos(self):
        viewer = FullscreenViewer()
        viewer.open([])
        assert not viewer.is_open

    def test_swipe(self):
        viewer = FullscreenViewer()
        viewer.open(["a", "b"])
        viewer.swipe_start(400)
        viewer.swipe_move(100)
        assert viewer.swipe_end()
        assert viewer.current_photo == "b"
