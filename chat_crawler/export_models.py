# chat_crawler/export_models.py
# Schema of the exported SQLite file. Kept apart from the crawl store's Base.
from sqlalchemy import Column, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

ExportBase = declarative_base()

class ExportChannel(ExportBase):
    __tablename__ = "channels"
    __table_args__ = {"sqlite_autoincrement": True}
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    url = Column(Text, nullable=False, unique=True)

class ExportUser(ExportBase):
    __tablename__ = "users"
    user_id = Column(Text, primary_key=True)
    username = Column(Text)

class ExportMessage(ExportBase):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("channel_id", "message_id"),
        Index("idx_messages_channel", "channel_id"),
        Index("idx_messages_timestamp", "timestamp"),
        Index("idx_messages_user_id", "user_id"),
        {"sqlite_autoincrement": True},
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"))
    message_id = Column(Text, nullable=False)
    user_id = Column(Text, ForeignKey("users.user_id", ondelete="SET NULL"))
    content = Column(Text)
    timestamp = Column(Text)
    attachments = Column(Text)
    reactions = Column(Text)
