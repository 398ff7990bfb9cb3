# src/block_view_state.py
"""
Transient, per-block view state: photo carousel index, swipe gesture and the
desktop/mobile layout class. None of this is part of the document; it lives in
a small store keyed by block id (plus a slot name when a block owns more than
one carousel, e.g. the alternatives of a location block).
"""

from dataclasses import dataclass, field

import config


def viewport_class(width: int | float | None) -> str:
    if width is None:
        return "desktop"
    return "mobile" if width < config.MOBILE_BREAKPOINT_PX else "desktop"


@dataclass
class CarouselState:
    index: int = 0
    touch_start: float | None = None
    touch_end: float | None = None

    def clamp(self, count: int) -> int:
        if count <= 0:
            self.index = 0
        elif self.index >= count:
            self.index = count - 1
        elif self.index < 0:
            self.index = 0
        return self.index

    def select(self, index: int, count: int) -> bool:
        """Dot click. Returns True if the index changed."""
        if not 0 <= index < count or index == self.index:
            return False
        self.index = index
        return True

    def next(self, count: int) -> bool:
        if self.index < count - 1:
            self.index += 1
            return True
        return False

    def previous(self) -> bool:
        if self.index > 0:
            self.index -= 1
            return True
        return False

    def swipe_start(self, x: float):
        self.touch_end = None
        self.touch_start = x

    def swipe_move(self, x: float):
        self.touch_end = x

    def swipe_end(self, count: int) -> bool:
        """Left swipe advances, right swipe goes back; below the threshold nothing happens."""
        start, end = self.touch_start, self.touch_end
        self.touch_start = self.touch_end = None
        if start is None or end is None:
            return False
        distance = start - end
        if distance > config.SWIPE_THRESHOLD_PX:
            return self.next(count)
        if distance < -config.SWIPE_THRESHOLD_PX:
            return self.previous()
        return False


@dataclass
class BlockViewState:
    block_id: str
    layout: str = "desktop"
    carousels: dict[str, CarouselState] = field(default_factory=dict)

    def carousel(self, slot: str = "main") -> CarouselState:
        if slot not in self.carousels:
            self.carousels[slot] = CarouselState()
        return self.carousels[slot]

    def sync_viewport(self, width) -> bool:
        """Recompute layout for the current viewport. Returns True on a desktop/mobile flip."""
        new_layout = viewport_class(width)
        changed = new_layout != self.layout
        self.layout = new_layout
        return changed

    @property
    def is_mobile(self) -> bool:
        return self.layout == "mobile"


class ViewStateStore:
    def __init__(self):
        self._states: dict[str, BlockViewState] = {}

    def get(self, block_id: str) -> BlockViewState:
        if block_id not in self._states:
            self._states[block_id] = BlockViewState(block_id=block_id)
        return self._states[block_id]

    def on_resize(self, width) -> list[str]:
        """Every block recomputes its own layout; returns the ids that flipped."""
        return [block_id for block_id, state in self._states.items() if state.sync_viewport(width)]

    def prune(self, block_ids):
        keep = set(block_ids)
        for block_id in list(self._states):
            if block_id not in keep:
                del self._states[block_id]

    def __contains__(self, block_id):
        return block_id in self._states

    def __len__(self):
        return len(self._states)


class FullscreenViewer:
    """Fullscreen photo viewer opened from any carousel."""

    def __init__(self):
        self.photos: list[str] = []
        self.is_open = False
        self.carousel = CarouselState()

    def open(self, photos: list[str], index: int = 0):
        if not photos:
            return
        self.photos = list(photos)
        self.carousel = CarouselState(index=index)
        self.carousel.clamp(len(self.photos))
        self.is_open = True

    def close(self):
        self.is_open = False
        self.photos = []
        self.carousel = CarouselState()

    @property
    def current_photo(self) -> str | None:
        if not self.is_open:
            return None
        return self.photos[self.carousel.index]

    def handle_key(self, key: str) -> bool:
        if not self.is_open:
            return False
        if key == "ArrowLeft":
            return self.carousel.previous()
        if key == "ArrowRight":
            return self.carousel.next(len(self.photos))
        if key == "Escape":
            self.close()
            return True
        return False

    def swipe_start(self, x: float):
        self.carousel.swipe_start(x)

    def swipe_move(self, x: float):
        self.carousel.swipe_move(x)

    def swipe_end(self) -> bool:
        return self.carousel.swipe_end(len(self.photos))
