# chat_crawler/services/surface.py
from typing import Optional

from bs4 import BeautifulSoup


class ChatSurface:
    """The scrollable chat view a crawl runs against.

    Implementations wrap a live browser tab (see browser.py) or a fixture.
    All methods are blocking; the pagination engine calls them off the
    event loop.
    """

    def current_url(self) -> str:
        raise NotImplementedError

    def snapshot(self) -> BeautifulSoup:
        """Parsed copy of the currently rendered document."""
        raise NotImplementedError

    def scroll_to_bottom(self) -> bool:
        raise NotImplementedError

    def scroll_up(self, fraction: float) -> bool:
        """Scroll up by ``fraction`` of the visible height, never past 0.

        Returns False when nothing moved (no scroll container, or already
        at the top).
        """
        raise NotImplementedError

    def scroll_position(self) -> Optional[float]:
        """Current scrollTop, or None when there is no scroll container."""
        raise NotImplementedError
