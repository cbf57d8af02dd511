"""Fixture markup and a scriptable chat surface for tests."""
from typing import Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from chat_crawler.errors import HostContextLost
from chat_crawler.services.surface import ChatSurface

SERVER_ID = "111"
CHANNEL_ID = "222"
CHANNEL_URL = f"https://discord.com/channels/{SERVER_ID}/{CHANNEL_ID}"


def reaction_html(emoji: str, count: int) -> str:
    return (
        '<div class="reaction_3a1b">'
        '<div class="reactionInner_3a1b">'
        f'<img class="emoji" data-type="emoji" data-name="{emoji}" src="https://cdn.discordapp.com/emojis/1.webp">'
        f'<div class="reactionCount_3a1b">{count}</div>'
        '</div></div>'
    )


def message_li(
    message_id: str,
    *,
    user_id: Optional[str] = None,
    username: str = "someone",
    header: Optional[bool] = None,
    content: str = "hello",
    timestamp: Optional[str] = "2025-01-01T10:00:00.000Z",
    reactions: Sequence[Tuple[str, int]] = (),
    attachment: bool = False,
    channel_id: str = CHANNEL_ID,
) -> str:
    """One rendered message. With a header it carries avatar + username;
    without one it looks like a grouped continuation."""
    if header is None:
        header = user_id is not None
    parts = [f'<li id="chat-messages-{channel_id}-{message_id}" class="messageListItem_5e6f">']
    time_tag = f'<time datetime="{timestamp}">10:00</time>' if timestamp else ""
    if header:
        avatar = (
            f"https://cdn.discordapp.com/avatars/{user_id}/a1b2c3.webp?size=80"
            if user_id
            else "https://cdn.discordapp.com/embed/avatars/0.png"
        )
        parts.append(f'<img class="avatar_9f8e" src="{avatar}" alt="">')
        parts.append(
            f'<h3 class="header_2c3d"><span id="message-username-{message_id}" '
            f'class="username_2c3d">{username}</span>{time_tag}</h3>'
        )
    elif time_tag:
        parts.append(f'<span class="timestamp_7a8b">{time_tag}</span>')
    parts.append(f'<div id="message-content-{message_id}" class="markup_4d5e">{content}</div>')
    if attachment:
        parts.append('<div class="imageWrapper_6b7c"><img src="https://media.example/x.png"></div>')
    if reactions:
        parts.append(f'<div id="message-reactions-{message_id}" class="reactions_3a1b" role="group">')
        parts.extend(reaction_html(emoji, count) for emoji, count in reactions)
        parts.append("</div>")
    parts.append("</li>")
    return "".join(parts)


def chat_page(messages: Iterable[str], channel_name: str = "general", server_name: str = "Test Server") -> str:
    return (
        "<html><body>"
        f'<nav aria-label="{server_name} (server)"><h2>{server_name}</h2></nav>'
        f'<section aria-label="Channel header"><h1>{channel_name}</h1></section>'
        '<div class="scroller_1a2b managedReactiveScroller_1a2b">'
        '<ol data-list-id="chat-messages">'
        + "".join(messages)
        + "</ol></div></body></html>"
    )


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def first_li(html: str):
    return soup_of(html).find("li")


def numbered_messages(start: int, stop: int, user_id: str = "42") -> List[str]:
    return [message_li(str(i), user_id=user_id, content=f"message {i}") for i in range(start, stop)]


class FakeSurface(ChatSurface):
    """Scripted chat view.

    Each scroll that moves reveals the next page in ``pages`` (older
    history); position drops by the scrolled amount and sticks at 0.
    """

    def __init__(
        self,
        pages: Sequence[str],
        url: str = CHANNEL_URL,
        bottom: float = 1000,
        client_height: float = 500,
        has_scroller: bool = True,
    ):
        self.pages = list(pages)
        self.url = url
        self.bottom = bottom
        self.client_height = client_height
        self.has_scroller = has_scroller
        self.position = bottom
        self.index = 0
        self.scroll_calls = 0
        self.gone = False

    def current_url(self) -> str:
        if self.gone:
            raise HostContextLost("tab closed")
        return self.url

    def snapshot(self) -> BeautifulSoup:
        return soup_of(self.pages[self.index])

    def scroll_to_bottom(self) -> bool:
        if not self.has_scroller:
            return False
        self.position = self.bottom
        return True

    def scroll_up(self, fraction: float) -> bool:
        self.scroll_calls += 1
        if not self.has_scroller or self.position <= 0:
            return False
        self.position = max(0, self.position - self.client_height * fraction)
        self.index = min(self.index + 1, len(self.pages) - 1)
        return True

    def scroll_position(self):
        return self.position if self.has_scroller else None


FAST = {
    "initial_settle": 0,
    "settle_delay": 0,
    "step_delay": 0,
}

SLOW_ENOUGH = {
    "initial_settle": 0.01,
    "settle_delay": 0.01,
    "step_delay": 0.01,
}
