# chat_crawler/services/pagination.py
"""
Scroll-driven pagination over a virtualized chat history.

The engine scrolls the message list upward step by step, lets the client
render older messages, extracts whatever is new and hands it on. It stops
once several steps in a row yield nothing new while the view sits at the
top, which keeps slow history loads from ending the crawl early.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from chat_crawler.config import settings
from chat_crawler.errors import HostContextLost
from chat_crawler.services.extractor import ExtractionBatch, MessageExtractor
from chat_crawler.services.surface import ChatSurface

log = logging.getLogger(__name__)


class CrawlState(str, Enum):
    IDLE = "idle"
    SCROLLING = "scrolling"
    SETTLING = "settling"
    STOPPED = "stopped"


class PaginationEngine:
    def __init__(
        self,
        surface: ChatSurface,
        extractor: MessageExtractor,
        on_batch: Callable[[ExtractionBatch], None],
        *,
        on_state: Optional[Callable[[CrawlState], None]] = None,
        platform_domain: str = settings.platform_domain,
        initial_settle: float = settings.initial_settle_ms / 1000,
        settle_delay: float = settings.scroll_delay_ms / 1000,
        step_delay: float = settings.scroll_delay_ms / 1000,
        scroll_fraction: float = settings.scroll_fraction,
        no_growth_threshold: int = settings.no_growth_threshold,
        top_tolerance: float = settings.top_tolerance_px,
    ):
        self.surface = surface
        self.extractor = extractor
        self.on_batch = on_batch
        self.on_state = on_state
        self.platform_domain = platform_domain
        self.initial_settle = initial_settle
        self.settle_delay = settle_delay
        self.step_delay = step_delay
        self.scroll_fraction = scroll_fraction
        self.no_growth_threshold = no_growth_threshold
        self.top_tolerance = top_tolerance

        self.state = CrawlState.IDLE
        self.no_growth = 0
        self.steps = 0
        self._stop_requested = False

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Ask the loop to end at its next step. Safe to call repeatedly."""
        self._stop_requested = True

    def _set_state(self, state: CrawlState) -> None:
        if state is self.state:
            return
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    async def _check_host(self) -> None:
        url = await self._call(self.surface.current_url)
        if self.platform_domain not in (url or ""):
            raise HostContextLost(f"Tab left {self.platform_domain}: {url}")

    async def _at_top(self) -> bool:
        position = await self._call(self.surface.scroll_position)
        # No scroll container means there is nothing left to scroll
        return position is None or position <= self.top_tolerance

    async def _step(self) -> bool:
        """One scroll/settle/extract cycle. Returns True when the history is exhausted."""
        before = self.extractor.processed_count

        self._set_state(CrawlState.SCROLLING)
        scrolled = await self._call(self.surface.scroll_up, self.scroll_fraction)

        self._set_state(CrawlState.SETTLING)
        await asyncio.sleep(self.settle_delay)

        soup = await self._call(self.surface.snapshot)
        batch = self.extractor.extract_document(soup)
        if batch:
            self.on_batch(batch)

        self.steps += 1
        if self.extractor.processed_count > before:
            self.no_growth = 0
            return False

        self.no_growth += 1
        log.debug("Step %d: no new messages (%d in a row, scrolled=%s)",
                  self.steps, self.no_growth, scrolled)
        return self.no_growth >= self.no_growth_threshold and await self._at_top()

    async def run(self) -> CrawlState:
        if self.state is CrawlState.STOPPED:
            return self.state

        try:
            self._set_state(CrawlState.SCROLLING)
            await self._call(self.surface.scroll_to_bottom)
            await asyncio.sleep(self.initial_settle)

            self.no_growth = 0
            while not self._stop_requested:
                await self._check_host()
                if await self._step():
                    log.info("Reached the top of the history after %d steps", self.steps)
                    break
                await asyncio.sleep(self.step_delay)
        finally:
            self._set_state(CrawlState.STOPPED)
        return self.state
