import re

from chat_crawler.services.extractor import (
    ChannelContext,
    MessageExtractor,
    extract_content,
    extract_context,
    extract_ids_from_url,
    extract_message_id,
    extract_reactions,
    extract_timestamp,
    extract_user_id_from_avatar,
    has_attachments,
)
from helpers import (
    CHANNEL_ID,
    CHANNEL_URL,
    SERVER_ID,
    chat_page,
    first_li,
    message_li,
    soup_of,
)


def make_extractor(**kwargs):
    context = ChannelContext(server_id=SERVER_ID, channel_id=CHANNEL_ID, channel_name="general")
    return MessageExtractor(context, **kwargs)


def test_ids_from_url():
    assert extract_ids_from_url(CHANNEL_URL) == (SERVER_ID, CHANNEL_ID)
    assert extract_ids_from_url("https://discord.com/channels/@me") == (None, None)
    assert extract_ids_from_url(None) == (None, None)


def test_context_from_page():
    context = extract_context(CHANNEL_URL, soup_of(chat_page([], channel_name="random", server_name="Guild")))
    assert context.server_id == SERVER_ID
    assert context.channel_id == CHANNEL_ID
    assert context.channel_name == "random"
    assert context.server_name == "Guild"
    assert context.is_crawlable


def test_context_without_channel_is_not_crawlable():
    context = extract_context("https://discord.com/channels/@me", soup_of("<html></html>"))
    assert not context.is_crawlable
    assert context.channel_name is None


def test_message_id_from_element_id():
    assert extract_message_id(first_li(message_li("987", user_id="1"))) == "987"


def test_message_id_keeps_unrecognized_ids():
    li = first_li('<li id="something-else"></li>')
    assert extract_message_id(li) == "something-else"


def test_user_id_from_avatar_urls():
    li = first_li('<li><img src="https://cdn.discordapp.com/avatars/555/abc.webp"></li>')
    assert extract_user_id_from_avatar(li.find("img")) == "555"

    guild = first_li('<li><img src="https://cdn.discordapp.com/guilds/9/users/777/avatars/abc.webp"></li>')
    assert extract_user_id_from_avatar(guild.find("img")) == "777"

    default = first_li('<li><img src="https://cdn.discordapp.com/embed/avatars/0.png"></li>')
    assert extract_user_id_from_avatar(default.find("img")) is None
    assert extract_user_id_from_avatar(None) is None


def test_reactions_drop_zero_counts():
    li = first_li(message_li("1", user_id="42", reactions=[("👍", 1), ("🎉", 0)]))
    reactions = extract_reactions(li)
    assert [(r.emoji, r.count) for r in reactions] == [("👍", 1)]


def test_reactions_absent():
    assert extract_reactions(first_li(message_li("1", user_id="42"))) == []


def test_content_falls_back_to_markup_classes():
    li = first_li('<li id="chat-messages-2-1"><div class="messageContent_x"> hi there </div></li>')
    assert extract_content(li) == "hi there"
    assert extract_content(first_li('<li id="chat-messages-2-1"></li>')) == ""


def test_timestamp_falls_back_to_now():
    li = first_li(message_li("1", user_id="42", timestamp=None))
    stamp = extract_timestamp(li)
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", stamp)


def test_attachments_detected():
    assert has_attachments(first_li(message_li("1", user_id="42", attachment=True)))
    assert not has_attachments(first_li(message_li("1", user_id="42")))


def test_grouped_messages_inherit_author():
    extractor = make_extractor()
    page = chat_page([
        message_li("1", user_id="42", username="alice"),
        message_li("2"),
        message_li("3"),
    ])
    batch = extractor.extract_document(soup_of(page))

    assert [m.message_id for m in batch.messages] == ["1", "2", "3"]
    assert [m.user_id for m in batch.messages] == ["42", "42", "42"]
    assert [(u.user_id, u.username) for u in batch.users] == [("42", "alice")]
    assert all(m.channel_id == CHANNEL_ID for m in batch.messages)


def test_grouped_message_does_not_emit_user():
    extractor = make_extractor()
    pair = extractor.parse_message(first_li(message_li("2")), last_seen_author_id="42")
    assert pair.message.user_id == "42"
    assert pair.user is None


def test_header_without_resolvable_id():
    extractor = make_extractor()
    page = chat_page([
        message_li("1", user_id="42"),
        message_li("2", header=True, username="ghost"),
        message_li("3"),
    ])
    batch = extractor.extract_document(soup_of(page))

    by_id = {m.message_id: m for m in batch.messages}
    assert by_id["2"].user_id is None
    # The unresolved header does not reset who is speaking
    assert by_id["3"].user_id == "42"
    assert [u.user_id for u in batch.users] == ["42"]


def test_messages_are_produced_once_per_session():
    extractor = make_extractor()
    page = soup_of(chat_page([message_li("1", user_id="42"), message_li("2")]))

    first = extractor.extract_document(page)
    second = extractor.extract_document(page)

    assert len(first.messages) == 2
    assert not second
    assert second.messages == []
    assert extractor.processed_count == 2


def test_author_carries_across_already_processed_messages():
    extractor = make_extractor()
    extractor.extract_document(soup_of(chat_page([message_li("5", user_id="42")])))

    # Older history rendered above, and a grouped reply below the known one
    page = chat_page([
        message_li("4", user_id="7"),
        message_li("5", user_id="42"),
        message_li("6"),
    ])
    batch = extractor.extract_document(soup_of(page))

    assert {m.message_id: m.user_id for m in batch.messages} == {"4": "7", "6": "42"}


def test_users_deduplicated_within_batch():
    extractor = make_extractor()
    page = chat_page([
        message_li("1", user_id="42", username="alice"),
        message_li("2", user_id="7", username="bob"),
        message_li("3", user_id="42", username="alice"),
    ])
    batch = extractor.extract_document(soup_of(page))
    assert [u.user_id for u in batch.users] == ["42", "7"]


def test_missing_username_is_unknown():
    extractor = make_extractor()
    li = first_li(
        '<li id="chat-messages-222-1">'
        '<img src="https://cdn.discordapp.com/avatars/42/abc.webp">'
        '<div id="message-content-1">hey</div></li>'
    )
    pair = extractor.parse_message(li)
    assert pair.user.username == "Unknown"
    assert pair.user.avatar_url == "https://cdn.discordapp.com/avatars/42/abc.webp"


def test_non_message_elements_ignored():
    extractor = make_extractor()
    assert extractor.parse_message(soup_of("<div id='chat-messages-1-2'></div>").div) is None
    assert extractor.parse_message(first_li("<li></li>")) is None
    assert extractor.extract_document(soup_of("<html><body></body></html>")).messages == []


def test_processed_callback_and_reset():
    counts = []
    extractor = make_extractor(on_processed=counts.append)
    extractor.extract_document(soup_of(chat_page([message_li("1", user_id="42"), message_li("2")])))
    assert counts == [1, 2]

    extractor.reset(ChannelContext(channel_id="333"))
    assert extractor.processed_count == 0
    batch = extractor.extract_document(soup_of(chat_page([message_li("1", user_id="42")])))
    assert batch.messages[0].channel_id == "333"


def test_bad_element_does_not_abort_batch(monkeypatch):
    extractor = make_extractor()
    original = extractor.parse_message

    def flaky(element, last_seen_author_id=None):
        if extract_message_id(element) == "2":
            raise RuntimeError("boom")
        return original(element, last_seen_author_id)

    monkeypatch.setattr(extractor, "parse_message", flaky)
    page = chat_page([message_li("1", user_id="42"), message_li("2"), message_li("3")])
    batch = extractor.extract_document(soup_of(page))
    assert [m.message_id for m in batch.messages] == ["1", "3"]
