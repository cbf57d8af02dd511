# chat_crawler/services/extractor.py
"""
Turns rendered chat markup into message and user records.

Everything here works on BeautifulSoup trees, so the same code handles a
live browser snapshot and a fixture string in tests.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from bs4 import BeautifulSoup, Tag

from chat_crawler.config import settings
from chat_crawler.schemas import (
    ChannelRecord,
    MessageRecord,
    Reaction,
    ServerRecord,
    UserRecord,
)

log = logging.getLogger(__name__)

MESSAGE_ID_RE = re.compile(r"^chat-messages-\d+-(\d+)$")
CHANNEL_URL_RE = re.compile(r"/channels/(\d+)/(\d+)")
GUILD_AVATAR_RE = re.compile(r"guilds/\d+/users/(\d+)/avatars/")
AVATAR_RE = re.compile(r"avatars/(\d+)/")
LEADING_INT_RE = re.compile(r"\s*(\d+)")

USERNAME_FALLBACKS = ('[class*="username"]', '[class*="author"]', '[id*="user"]')
CONTENT_FALLBACKS = ('[class*="messageContent"]', '[class*="markup"]', '[class*="text"]')
ATTACHMENT_SELECTORS = ('[class*="attachment"]', '[class*="embed"]', '[class*="imageWrapper"]')


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text(tag: Optional[Tag]) -> Optional[str]:
    if tag is None:
        return None
    return tag.get_text().strip() or None


def _class_string(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        return classes
    return " ".join(classes)


@dataclass
class ChannelContext:
    server_id: Optional[str] = None
    server_name: Optional[str] = None
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None

    @property
    def is_crawlable(self) -> bool:
        return bool(self.channel_id)

    def server_record(self) -> ServerRecord:
        return ServerRecord(server_id=self.server_id, server_name=self.server_name)

    def channel_record(self) -> ChannelRecord:
        return ChannelRecord(
            channel_id=self.channel_id,
            server_id=self.server_id,
            channel_name=self.channel_name,
        )


@dataclass
class ExtractedPair:
    message: MessageRecord
    user: Optional[UserRecord] = None


@dataclass
class ExtractionBatch:
    messages: List[MessageRecord] = field(default_factory=list)
    users: List[UserRecord] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.messages)


# --- page context ---

def extract_ids_from_url(url: str):
    match = CHANNEL_URL_RE.search(url or "")
    if match:
        return match.group(1), match.group(2)
    return None, None


def extract_server_name(soup: BeautifulSoup) -> Optional[str]:
    for selector in ('nav[aria-label*="server"] h2', "header h2"):
        name = _text(soup.select_one(selector))
        if name:
            return name
    return None


def extract_channel_name(soup: BeautifulSoup) -> Optional[str]:
    for selector in ('section[aria-label="Channel header"] h1', '[class*="titleWrapper"]', "header h1"):
        name = _text(soup.select_one(selector))
        if name:
            return name
    return None


def extract_context(url: str, soup: BeautifulSoup) -> ChannelContext:
    server_id, channel_id = extract_ids_from_url(url)
    return ChannelContext(
        server_id=server_id,
        server_name=extract_server_name(soup),
        channel_id=channel_id,
        channel_name=extract_channel_name(soup),
    )


# --- single message fields ---

def extract_message_id(element: Tag) -> Optional[str]:
    element_id = element.get("id")
    if not element_id:
        return None
    match = MESSAGE_ID_RE.match(element_id)
    if match:
        return match.group(1)
    return element_id


def extract_user_id_from_avatar(img: Optional[Tag]) -> Optional[str]:
    src = img.get("src") if img is not None else None
    if not src:
        return None
    for pattern in (GUILD_AVATAR_RE, AVATAR_RE):
        match = pattern.search(src)
        if match:
            return match.group(1)
    return None


def extract_username(element: Tag) -> Optional[str]:
    name = _text(element.select_one('span[id^="username"]'))
    if name:
        return name
    for selector in USERNAME_FALLBACKS:
        name = _text(element.select_one(selector))
        if name:
            return name
    return None


def extract_avatar_url(element: Tag) -> Optional[str]:
    for selector in (
        'img[src*="cdn.discordapp.com/avatars/"]',
        'img[src*="discordapp.com/avatars/"]',
        'img[src*="avatars/"]',
    ):
        img = element.select_one(selector)
        if img is not None and img.get("src"):
            return img["src"]
    return None


def extract_timestamp(element: Tag) -> str:
    for selector in ("time[datetime]", '[class*="timestamp"][datetime]'):
        found = element.select_one(selector)
        if found is not None and found.get("datetime"):
            return found["datetime"]
    # Lossy: nothing on the element says when it was sent
    return utc_now_iso()


def _content_of(tag: Tag) -> str:
    return tag.get_text().strip() or tag.decode_contents().strip() or ""


def extract_content(element: Tag) -> str:
    content_div = element.select_one('div[id^="message-content-"]')
    if content_div is not None:
        return _content_of(content_div)
    for selector in CONTENT_FALLBACKS:
        found = element.select_one(selector)
        if found is not None:
            return _content_of(found)
    return ""


def _reaction_element(emoji_img: Tag, container: Tag) -> Optional[Tag]:
    for parent in emoji_img.parents:
        if parent is container:
            break
        classes = _class_string(parent)
        if "reaction" in classes and "reactions" not in classes:
            return parent
    return None


def _reaction_count(reaction_el: Optional[Tag]) -> int:
    if reaction_el is None:
        return 0
    count_el = reaction_el.select_one('[class*="reactionCount"]')
    if count_el is None:
        return 0
    match = LEADING_INT_RE.match(count_el.get_text())
    return int(match.group(1)) if match else 0


def extract_reactions(element: Tag) -> List[Reaction]:
    container = (
        element.select_one('[role="group"][class*="reactions"]')
        or element.select_one('[id^="message-reactions-"]')
        or element.select_one('[class*="reactions"]')
    )
    if container is None:
        return []

    reactions = []
    for emoji_img in container.select('img.emoji[data-type="emoji"]'):
        name = emoji_img.get("data-name")
        if not name:
            continue
        count = _reaction_count(_reaction_element(emoji_img, container))
        # A zero count is reaction chrome (e.g. the add-reaction button), not data
        if count == 0:
            continue
        reactions.append(Reaction(emoji=name, count=count))
    return reactions


def has_attachments(element: Tag) -> bool:
    return any(element.select_one(selector) is not None for selector in ATTACHMENT_SELECTORS)


def has_message_header(element: Tag) -> bool:
    if element.select_one('img[src*="avatars/"]') is not None:
        return True
    if element.select_one('span[id^="message-username-"]') is not None:
        return True
    header = element.select_one('[class*="header"]')
    return header is not None and header.select_one('span[class*="username"]') is not None


class MessageExtractor:
    """Stateful extractor for one crawl session.

    Holds the session-local set of processed message ids, so a message is
    produced at most once per session however often it is rendered.
    """

    def __init__(
        self,
        context: Optional[ChannelContext] = None,
        on_processed: Optional[Callable[[int], None]] = None,
        message_list_selector: str = settings.message_list_selector,
    ):
        self.context = context or ChannelContext()
        self.on_processed = on_processed
        self.message_list_selector = message_list_selector
        self.processed_ids: Set[str] = set()
        # user_id each processed message resolved to, replayed for grouping
        self._authors: Dict[str, Optional[str]] = {}

    @property
    def processed_count(self) -> int:
        return len(self.processed_ids)

    def reset(self, context: Optional[ChannelContext] = None) -> None:
        self.processed_ids.clear()
        self._authors.clear()
        if context is not None:
            self.context = context

    def parse_message(self, element, last_seen_author_id: Optional[str] = None) -> Optional[ExtractedPair]:
        if not isinstance(element, Tag) or element.name != "li":
            return None

        message_id = extract_message_id(element)
        if not message_id or message_id in self.processed_ids:
            return None

        user = None
        if has_message_header(element):
            user_id = extract_user_id_from_avatar(element.select_one('img[src*="avatars/"]'))
            if user_id:
                user = UserRecord(
                    user_id=user_id,
                    username=extract_username(element) or "Unknown",
                    avatar_url=extract_avatar_url(element),
                )
        else:
            # Grouped continuation of the previous author's message
            user_id = last_seen_author_id

        message = MessageRecord(
            message_id=message_id,
            channel_id=self.context.channel_id,
            user_id=user_id,
            timestamp=extract_timestamp(element),
            content=extract_content(element),
            has_attachments=has_attachments(element),
            reactions=extract_reactions(element),
        )

        self.processed_ids.add(message_id)
        self._authors[message_id] = user_id
        if self.on_processed is not None:
            self.on_processed(len(self.processed_ids))

        return ExtractedPair(message=message, user=user)

    def message_elements(self, soup: BeautifulSoup) -> List[Tag]:
        chat_list = soup.select_one(self.message_list_selector)
        if chat_list is None:
            return []
        return chat_list.select('li[id^="chat-messages-"]')

    def extract_document(self, soup: BeautifulSoup) -> ExtractionBatch:
        """Extract every not-yet-seen message currently rendered, in order."""
        batch = ExtractionBatch()
        seen_users: Set[str] = set()
        last_seen_author_id = None

        for index, element in enumerate(self.message_elements(soup)):
            try:
                known_id = extract_message_id(element)
                if known_id in self.processed_ids:
                    # Already stored, but still tells us who is speaking
                    if self._authors.get(known_id):
                        last_seen_author_id = self._authors[known_id]
                    continue

                parsed = self.parse_message(element, last_seen_author_id)
                if parsed is None:
                    continue

                batch.messages.append(parsed.message)
                if parsed.message.user_id:
                    last_seen_author_id = parsed.message.user_id
                if parsed.user is not None and parsed.user.user_id not in seen_users:
                    seen_users.add(parsed.user.user_id)
                    batch.users.append(parsed.user)
            except Exception:
                log.exception("Error parsing message element %d", index)

        return batch
