# chat_crawler/services/keyed_store.py
"""
Keyed record store for crawled chat data.

Four named stores (servers, channels, users, messages), each keyed by the
platform's natural id. Writes are upserts; batches commit once, with every
record in its own SAVEPOINT so a bad record only costs itself.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from chat_crawler.database import Base, SessionLocal, build_engine, engine
from chat_crawler.models import Channel, Message, Server, User

log = logging.getLogger(__name__)

STORES = {
    "servers": Server,
    "channels": Channel,
    "users": User,
    "messages": Message,
}

Record = Dict[str, Any]
MergeFn = Callable[[Optional[Record], Record], Record]


def _model(store: str):
    try:
        return STORES[store]
    except KeyError:
        raise ValueError(f"Unknown store: {store}") from None


def _key_name(model) -> str:
    return model.__mapper__.primary_key[0].name


def _as_dict(obj) -> Record:
    return {c.name: getattr(obj, c.name) for c in obj.__table__.columns}


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def latest_timestamp(current: Optional[str], incoming: Optional[str]) -> Optional[str]:
    """Pick the later of two ISO-8601 stamps, never moving backwards."""
    if not incoming:
        return current
    if not current:
        return incoming
    current_dt, incoming_dt = _parse_iso(current), _parse_iso(incoming)
    if incoming_dt is None:
        return current
    if current_dt is None or incoming_dt > current_dt:
        return incoming
    return current


def merge_channel(existing: Optional[Record], incoming: Record) -> Record:
    """Merge-on-write for channels.

    Fields missing (or None) in the incoming record keep their stored value.
    last_crawled_at only changes when a newer value is supplied explicitly.
    """
    merged = dict(existing or {})
    for field, value in incoming.items():
        if field == "last_crawled_at" or value is None:
            continue
        merged[field] = value
    merged["last_crawled_at"] = latest_timestamp(
        (existing or {}).get("last_crawled_at"), incoming.get("last_crawled_at")
    )
    return merged


class KeyedStore:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, url: str) -> "KeyedStore":
        db_engine = build_engine(url)
        Base.metadata.create_all(bind=db_engine)
        return cls(sessionmaker(autocommit=False, autoflush=False, bind=db_engine))

    # --- writes ---

    def upsert(self, store: str, record: Record, merge: Optional[MergeFn] = None) -> bool:
        """Insert or update one record. Returns False when the record has no key."""
        model = _model(store)
        key = _key_name(model)
        if not record or not record.get(key):
            return False

        with self.session_factory() as db:
            if merge is not None:
                existing = db.get(model, record[key])
                record = merge(_as_dict(existing) if existing is not None else None, record)
            db.merge(model(**record))
            db.commit()
        return True

    def batch_upsert(self, store: str, records: Iterable[Record]) -> int:
        """Upsert many records in one transaction.

        Records without a key are skipped. Returns the number of records
        that failed; the rest are committed regardless.
        """
        model = _model(store)
        key = _key_name(model)
        failed = 0
        written = 0

        with self.session_factory() as db:
            for record in records:
                if not record or not record.get(key):
                    continue
                try:
                    obj = model(**record)
                    with db.begin_nested():
                        db.merge(obj)
                    written += 1
                except (SQLAlchemyError, TypeError) as e:
                    failed += 1
                    log.error("Error storing %s record %r: %s", store, record.get(key), e)
            db.commit()

        log.debug("Stored %d %s (%d failed)", written, store, failed)
        return failed

    def store_server(self, server: Record) -> bool:
        return self.upsert("servers", server)

    def store_channel(self, channel: Record) -> bool:
        return self.upsert("channels", channel, merge=merge_channel)

    def clear_all(self) -> None:
        with self.session_factory() as db:
            for model in STORES.values():
                db.query(model).delete()
            db.commit()
        log.info("Cleared all stored servers, channels, users and messages")

    # --- reads ---

    def get_by_key(self, store: str, key: str) -> Optional[Record]:
        if not key:
            return None
        with self.session_factory() as db:
            obj = db.get(_model(store), key)
            return _as_dict(obj) if obj is not None else None

    def get_by_index(self, store: str, index: str, value: Any) -> List[Record]:
        model = _model(store)
        column = model.__table__.columns.get(index)
        if column is None or not column.index:
            raise ValueError(f"{store} has no index on {index}")
        with self.session_factory() as db:
            return [_as_dict(obj) for obj in db.query(model).filter(column == value).all()]

    def count(self, store: str, **filters) -> int:
        model = _model(store)
        with self.session_factory() as db:
            query = db.query(func.count()).select_from(model)
            if filters:
                query = query.filter_by(**filters)
            return query.scalar() or 0

    def get_all(
        self,
        store: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> List[Record]:
        model = _model(store)
        with self.session_factory() as db:
            query = db.query(model)
            if order_by:
                column = getattr(model, order_by)
                query = query.order_by(column.desc() if descending else column.asc())
            if limit is not None:
                query = query.limit(limit)
            return [_as_dict(obj) for obj in query.all()]

    def message_count(self, channel_id: Optional[str] = None) -> int:
        if channel_id:
            return self.count("messages", channel_id=channel_id)
        return self.count("messages")

    def channel_count(self) -> int:
        return self.count("channels")

    def channel_stats(self, channel_id: str) -> Record:
        channel = self.get_by_key("channels", channel_id)
        if channel is None:
            return {"message_count": 0, "last_crawled": None}
        return {
            "message_count": self.message_count(channel_id),
            "last_crawled": channel.get("last_crawled_at"),
        }

    def get_all_servers(self) -> List[Record]:
        return self.get_all("servers")

    def get_all_channels(self) -> List[Record]:
        return self.get_all("channels")

    def get_all_users(self) -> List[Record]:
        return self.get_all("users")

    def get_all_messages(self, limit: Optional[int] = None) -> List[Record]:
        # Newest first
        return self.get_all("messages", order_by="timestamp", limit=limit, descending=True)

    def dump(self, limit: Optional[int] = None) -> Dict[str, List[Record]]:
        return {
            "servers": self.get_all_servers(),
            "channels": self.get_all_channels(),
            "users": self.get_all_users(),
            "messages": self.get_all_messages(limit),
        }


_store: Optional[KeyedStore] = None


def get_store() -> KeyedStore:
    """Process-wide store, created (with its tables) on first access."""
    global _store
    if _store is None:
        Base.metadata.create_all(bind=engine)
        _store = KeyedStore(SessionLocal)
    return _store
