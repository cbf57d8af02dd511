# chat_crawler/services/markdown_export.py
"""Markdown transcript of an exported SQLite database, grouped by channel."""
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from chat_crawler.database import build_engine
from chat_crawler.errors import TranscriptError

RECORDS_QUERY = text("""
    SELECT
        COALESCE(c.name, 'Unknown') AS channel_name,
        COALESCE(u.username, 'Unknown') AS username,
        COALESCE(m.timestamp, '') AS timestamp,
        COALESCE(m.content, '') AS content
    FROM messages m
    LEFT JOIN channels c ON m.channel_id = c.id
    LEFT JOIN users u ON m.user_id = u.user_id
    ORDER BY m.timestamp ASC
""")

_NAIVE_FORMATS = ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d")
_UNSAFE_FILENAME_RE = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')


@dataclass
class TranscriptRecord:
    channel_name: str
    username: str
    timestamp: str
    content: str


def format_timestamp_to_local(value: str) -> str:
    """Render a stored timestamp in local time; unknown formats pass through."""
    if not value:
        return ""

    parsed = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _NAIVE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return value

    # Naive values are stored UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def sanitize_filename(name: str) -> str:
    return _UNSAFE_FILENAME_RE.sub("-", name).strip()


def export_filename(suffix: str, now: Optional[datetime] = None) -> str:
    """Default download name, e.g. chat-export-2025-01-01T10-00-00.sqlite"""
    now = now or datetime.now()
    return sanitize_filename(f"chat-export-{now.isoformat(timespec='seconds')}{suffix}")


def load_records(db_path: Union[str, Path]) -> List[TranscriptRecord]:
    # Connecting to a missing path would create an empty database there
    if not Path(db_path).is_file():
        raise TranscriptError(f"Error during extraction: {db_path} does not exist")

    engine = build_engine(f"sqlite:///{db_path}")
    try:
        with engine.connect() as conn:
            rows = conn.execute(RECORDS_QUERY).all()
    except SQLAlchemyError as e:
        reason = getattr(e, "orig", None) or e
        raise TranscriptError(f"Error during extraction: {reason}") from e
    finally:
        engine.dispose()
    return [
        TranscriptRecord(
            channel_name=row.channel_name,
            username=row.username,
            timestamp=format_timestamp_to_local(row.timestamp),
            content=row.content,
        )
        for row in rows
    ]


def load_records_from_bytes(blob: bytes) -> List[TranscriptRecord]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "export.sqlite"
        path.write_bytes(blob)
        return load_records(path)


def format_markdown(records: List[TranscriptRecord]) -> str:
    if not records:
        return "# Chat Messages\n\nNo messages found.\n"

    channels: Dict[str, List[TranscriptRecord]] = {}
    for record in records:
        channels.setdefault(record.channel_name, []).append(record)

    out = ["# Chat Messages\n\n", f"**Total messages:** {len(records)}\n\n", "---\n\n"]
    for channel_name in sorted(channels):
        channel_records = channels[channel_name]
        out.append(f"## #{channel_name}\n\n")
        out.append(f"*{len(channel_records)} messages in this channel*\n\n")
        for record in channel_records:
            out.append(f"**{record.username}** *{record.timestamp}*\n\n")
            content = record.content.strip()
            out.append(f"{content}\n\n" if content else "*[No content]*\n\n")
            out.append("---\n\n")
    return "".join(out)


def write_markdown(db_path: Union[str, Path], output_path: Union[str, Path]) -> int:
    records = load_records(db_path)
    Path(output_path).write_text(format_markdown(records), encoding="utf-8")
    return len(records)
