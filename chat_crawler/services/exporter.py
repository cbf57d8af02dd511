# chat_crawler/services/exporter.py
"""
Re-normalizes the crawl store into a standalone SQLite database.

The store keeps platform ids everywhere; the export introduces surrogate
channel ids, so channels are inserted first and every message is re-pointed
at its channel's new id. Users go in before messages for the same reason.
"""
import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chat_crawler.config import settings
from chat_crawler.database import build_engine
from chat_crawler.errors import NoDataError, NothingToExportError
from chat_crawler.export_models import ExportBase, ExportChannel, ExportMessage, ExportUser

log = logging.getLogger(__name__)


def channel_url(server_id: str, channel_id: str, host: str = settings.platform_host) -> str:
    return f"{host.rstrip('/')}/channels/{server_id}/{channel_id}"


def _as_mapping(record: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(record, Mapping):
        return record
    if hasattr(record, "model_dump"):
        return record.model_dump()
    return None


def _records(snapshot: Mapping[str, Any], name: str) -> Iterable[Mapping[str, Any]]:
    for record in snapshot.get(name) or []:
        mapping = _as_mapping(record)
        if mapping is not None:
            yield mapping


def serialize_reactions(reactions: Any) -> Optional[str]:
    if not isinstance(reactions, (list, tuple)) or not reactions:
        return None
    try:
        return json.dumps(
            [_as_mapping(r) or r for r in reactions],
            separators=(",", ":"),
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        log.error("Error serializing reactions: %s", e)
        return None


def coerce_timestamp(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return None


def _insert(db: Session, obj, what: str) -> bool:
    try:
        with db.begin_nested():
            db.add(obj)
        return True
    except SQLAlchemyError as e:
        log.error("Error inserting %s: %s", what, e)
        return False


def _export_users(db: Session, snapshot) -> Set[str]:
    inserted = set()
    for user in _records(snapshot, "users"):
        user_id = user.get("user_id")
        if not isinstance(user_id, str) or not user_id:
            continue
        if _insert(db, ExportUser(user_id=user_id, username=user.get("username") or None), f"user {user_id}"):
            inserted.add(user_id)
    return inserted


def _export_channels(db: Session, snapshot, host: str) -> Dict[str, int]:
    channel_ids = {}
    for channel in _records(snapshot, "channels"):
        server_id, source_id = channel.get("server_id"), channel.get("channel_id")
        if not server_id or not source_id:
            continue

        url = channel_url(server_id, source_id, host)
        name = channel.get("channel_name")
        name = name.strip() if isinstance(name, str) and name.strip() else "Unknown"
        if not _insert(db, ExportChannel(name=name, url=url), f"channel {source_id}"):
            continue

        surrogate = db.query(ExportChannel.id).filter(ExportChannel.url == url).scalar()
        if surrogate is not None:
            channel_ids[source_id] = surrogate
    return channel_ids


def _export_messages(db: Session, snapshot, channel_ids: Dict[str, int], user_ids: Set[str]) -> int:
    exported = 0
    for msg in _records(snapshot, "messages"):
        message_id, source_channel = msg.get("message_id"), msg.get("channel_id")
        if not message_id or not source_channel:
            continue
        channel_id = channel_ids.get(source_channel)
        if channel_id is None:
            continue

        user_id = msg.get("user_id")
        content = msg.get("content")
        row = ExportMessage(
            channel_id=channel_id,
            message_id=str(message_id),
            # Unknown authors become NULL rather than dangling references
            user_id=user_id if user_id in user_ids else None,
            content=content if isinstance(content, str) else "",
            timestamp=coerce_timestamp(msg.get("timestamp")),
            attachments="Yes" if msg.get("has_attachments") else "",
            reactions=serialize_reactions(msg.get("reactions")),
        )
        if _insert(db, row, f"message {message_id}"):
            exported += 1
    return exported


def export_database(snapshot: Any, host: str = settings.platform_host) -> bytes:
    """Build the normalized SQLite export and return the file's bytes."""
    snapshot = _as_mapping(snapshot) or {}
    if not snapshot.get("messages"):
        raise NoDataError()

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "export.sqlite"
        engine = build_engine(f"sqlite:///{path}")
        try:
            ExportBase.metadata.create_all(bind=engine)
            with sessionmaker(bind=engine)() as db:
                user_ids = _export_users(db, snapshot)
                channel_ids = _export_channels(db, snapshot, host)
                exported = _export_messages(db, snapshot, channel_ids, user_ids)
                db.commit()
        finally:
            engine.dispose()

        if exported == 0:
            raise NothingToExportError()

        log.info("Exported %d messages, %d channels, %d users", exported, len(channel_ids), len(user_ids))
        return path.read_bytes()
