import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Integer, Float, Boolean, DateTime, JSON, ForeignKey

from sitebot.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Site(Base):
    __tablename__ = "sites"

    id = Column(String(36), primary_key=True, default=_uuid)
    url = Column(String(2048), nullable=False)
    domain = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")   # pending | crawling | active | error
    additional_urls = Column(JSON, nullable=False, default=list)
    similarity_threshold = Column(Float, nullable=False, default=0.5)
    allow_general_knowledge = Column(Boolean, nullable=False, default=False)
    max_messages_per_session = Column(Integer, nullable=False, default=15)
    last_crawled_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=_uuid)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(64), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class KnowledgeChunk(Base):
    __tablename__ = "knowledge_chunks"

    id = Column(String(36), primary_key=True, default=_uuid)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    page_url = Column(String(2048), nullable=False)
    content = Column(Text, nullable=False)
    heading = Column(String(512), nullable=True)
    vector_id = Column(String(128), nullable=False, unique=True)
    chunk_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class WidgetSession(Base):
    __tablename__ = "widget_sessions"

    id = Column(String(100), primary_key=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address_hash = Column(String(64), nullable=False)
    user_email = Column(String(255), nullable=True)
    messages_count = Column(Integer, nullable=False, default=0)
    first_seen_at = Column(DateTime(timezone=True), default=utcnow)
    last_seen_at = Column(DateTime(timezone=True), default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(100), nullable=False, index=True)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    response_time_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ChatRating(Base):
    __tablename__ = "chat_ratings"

    id = Column(String(36), primary_key=True, default=_uuid)
    chat_message_id = Column(String(36), ForeignKey("chat_messages.id", ondelete="CASCADE"),
                             nullable=False, unique=True)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(100), nullable=False)
    rating = Column(String(10), nullable=False)   # positive | negative
    feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UnansweredQuestion(Base):
    __tablename__ = "unanswered_questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    site_id = Column(String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(100), nullable=False)
    user_email = Column(String(255), nullable=True)
    question = Column(Text, nullable=False)
    best_match_score = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="new")   # new | contacted | resolved
    timestamp = Column(DateTime(timezone=True), default=utcnow)
