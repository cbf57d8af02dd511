# chat_crawler/controllers/crawler_controller.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from chat_crawler.config import settings
from chat_crawler.errors import CrawlerBusyError, HostContextLost, InvalidTargetError, StorageError
from chat_crawler.schemas import CrawlStatus
from chat_crawler.services.extractor import (
    ChannelContext,
    ExtractionBatch,
    MessageExtractor,
    extract_context,
    utc_now_iso,
)
from chat_crawler.services.keyed_store import KeyedStore, get_store
from chat_crawler.services.pagination import CrawlState, PaginationEngine
from chat_crawler.services.status import StatusBroadcaster
from chat_crawler.services.surface import ChatSurface

log = logging.getLogger(__name__)


@dataclass
class CrawlSession:
    context: ChannelContext = field(default_factory=ChannelContext)
    is_crawling: bool = False
    finished: bool = False
    engine: Optional[PaginationEngine] = None
    task: Optional[asyncio.Task] = None
    last_error: Optional[str] = None


@dataclass
class StartReport:
    status: CrawlStatus
    initial_messages: int = 0
    initial_users: int = 0
    failed_records: int = 0


class CrawlCoordinator:
    """Owns the one crawl slot and moves extracted batches into the store."""

    def __init__(
        self,
        store: KeyedStore,
        broadcaster: Optional[StatusBroadcaster] = None,
        *,
        status_every: int = settings.status_every,
        platform_domain: str = settings.platform_domain,
        engine_options: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster or StatusBroadcaster()
        self.status_every = status_every
        self.platform_domain = platform_domain
        self.engine_options = dict(engine_options or {})
        self.engine_options.setdefault("platform_domain", platform_domain)

        self.session = CrawlSession(finished=True)
        self.extractor = MessageExtractor(on_processed=self._on_processed)
        self._lock = asyncio.Lock()

    @property
    def is_crawling(self) -> bool:
        return self.session.is_crawling

    def get_status(self) -> CrawlStatus:
        session = self.session
        if not session.is_crawling:
            return CrawlStatus(is_crawling=False, last_error=session.last_error)
        return CrawlStatus(
            is_crawling=True,
            current_channel_id=session.context.channel_id,
            current_channel_name=session.context.channel_name,
            current_server_name=session.context.server_name,
            message_count=self.extractor.processed_count,
            last_error=session.last_error,
        )

    def _publish(self) -> None:
        self.broadcaster.publish(self.get_status())

    def _on_processed(self, count: int) -> None:
        if self.session.is_crawling and count % self.status_every == 0:
            self._publish()

    def _on_state(self, state: CrawlState) -> None:
        log.debug("Pagination state: %s", state.value)
        self._publish()

    # --- storage ---

    def _store_context(self, context: ChannelContext) -> None:
        try:
            if context.server_id:
                self.store.store_server(context.server_record().model_dump())
            self.store.store_channel(context.channel_record().model_dump(exclude_none=True))
        except SQLAlchemyError as e:
            log.error("Error storing channel %s: %s", context.channel_id, e)
            raise StorageError(1, "channel") from e

    def _upsert_batch(self, store: str, records: List[Dict[str, Any]]) -> int:
        if not records:
            return 0
        try:
            return self.store.batch_upsert(store, records)
        except SQLAlchemyError as e:
            log.error("Batch write to %s failed: %s", store, e)
            return len(records)

    def _deliver(self, batch: ExtractionBatch) -> int:
        """Write one step's users and messages, one batch call each."""
        failed = self._upsert_batch("users", [u.model_dump() for u in batch.users])
        failed += self._upsert_batch("messages", [m.model_dump() for m in batch.messages])
        if failed:
            error = StorageError(failed)
            log.error("%s", error)
            self.session.last_error = str(error)
            self._publish()
        return failed

    # --- lifecycle ---

    async def start(self, surface: ChatSurface) -> StartReport:
        if self._lock.locked() or self.session.is_crawling:
            raise CrawlerBusyError()

        async with self._lock:
            try:
                url = await asyncio.to_thread(surface.current_url)
                if self.platform_domain not in (url or ""):
                    raise InvalidTargetError()
                soup = await asyncio.to_thread(surface.snapshot)
            except HostContextLost as e:
                raise InvalidTargetError(str(e)) from e

            context = extract_context(url, soup)
            if not context.is_crawlable:
                raise InvalidTargetError()

            self._store_context(context)

            session = CrawlSession(context=context, is_crawling=True)
            self.session = session
            self.extractor.reset(context)
            log.info("Starting crawl of #%s (%s) on %s",
                     context.channel_name, context.channel_id, context.server_name)

            # Whatever is already rendered goes out before the first scroll
            batch = self.extractor.extract_document(soup)
            failed = self._deliver(batch)

            session.engine = PaginationEngine(
                surface, self.extractor, self._deliver,
                on_state=self._on_state, **self.engine_options,
            )
            session.task = asyncio.create_task(self._run(session))
            self._publish()

            return StartReport(
                status=self.get_status(),
                initial_messages=len(batch.messages),
                initial_users=len(batch.users),
                failed_records=failed,
            )

    async def _run(self, session: CrawlSession) -> None:
        try:
            await session.engine.run()
        except HostContextLost as e:
            log.warning("Crawl interrupted: %s", e)
            self._end(session, stamp=False, error=str(e))
            return
        except Exception as e:
            log.exception("Crawl of %s failed", session.context.channel_id)
            self._end(session, stamp=False, error=str(e))
            return
        self._end(session, stamp=True)

    def _end(self, session: CrawlSession, *, stamp: bool, error: Optional[str] = None) -> bool:
        if session.finished:
            return False
        session.finished = True
        session.is_crawling = False
        if error:
            session.last_error = error
        if session.engine is not None:
            session.engine.request_stop()

        channel_id = session.context.channel_id
        if stamp and channel_id:
            try:
                self.store.store_channel({"channel_id": channel_id, "last_crawled_at": utc_now_iso()})
            except SQLAlchemyError as e:
                log.error("Error updating last_crawled_at for %s: %s", channel_id, e)

        log.info("Crawl of %s ended after %d messages%s", channel_id,
                 self.extractor.processed_count, "" if stamp else " (abandoned)")
        self._publish()
        return True

    async def _await_task(self, session: CrawlSession) -> None:
        task = session.task
        if task is not None and task is not asyncio.current_task():
            await task

    async def stop(self) -> bool:
        """Graceful stop. Stamps last_crawled_at; False when nothing was running."""
        session = self.session
        if not self._end(session, stamp=True):
            return False
        await self._await_task(session)
        return True

    async def abandon(self, reason: str = "Browsing context went away") -> bool:
        """Drop the session after an outside interruption, without stamping."""
        session = self.session
        if not self._end(session, stamp=False, error=reason):
            return False
        await self._await_task(session)
        return True

    async def wait(self) -> None:
        await self._await_task(self.session)


_coordinator: Optional[CrawlCoordinator] = None


def get_coordinator() -> CrawlCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = CrawlCoordinator(get_store())
    return _coordinator
