# chat_crawler/models.py
from sqlalchemy import JSON, Boolean, Column, String, Text

from .database import Base

class Server(Base):
    __tablename__ = "servers"
    server_id = Column(String, primary_key=True)
    server_name = Column(String, index=True)

class Channel(Base):
    __tablename__ = "channels"
    channel_id = Column(String, primary_key=True)
    server_id = Column(String, index=True)
    channel_name = Column(String, index=True)
    last_crawled_at = Column(String, nullable=True)

class User(Base):
    __tablename__ = "users"
    user_id = Column(String, primary_key=True)
    username = Column(String, index=True)
    avatar_url = Column(Text, nullable=True)

class Message(Base):
    __tablename__ = "messages"
    message_id = Column(String, primary_key=True)
    channel_id = Column(String, index=True)
    user_id = Column(String, index=True, nullable=True)
    timestamp = Column(String, index=True)
    content = Column(Text, default="")
    has_attachments = Column(Boolean, default=False)
    reactions = Column(JSON, default=list)
