from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from sitebot.db.database import SessionLocal
from sitebot.db.models import (
    Site,
    ApiKey,
    KnowledgeChunk,
    WidgetSession,
    ChatMessage,
    ChatRating,
    UnansweredQuestion,
)


class _Repository:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory


class SiteRepository(_Repository):
    def create(self, **fields) -> Site:
        with self.session_factory() as db:
            site = Site(**fields)
            db.add(site)
            db.commit()
            db.refresh(site)
            return site

    def find_by_id(self, site_id: str) -> Optional[Site]:
        with self.session_factory() as db:
            return db.get(Site, site_id)

    def find_by_domain(self, domain: str) -> Optional[Site]:
        with self.session_factory() as db:
            return db.query(Site).filter(Site.domain == domain).first()

    def update_status(self, site_id: str, status: str, error_message: Optional[str] = None) -> Optional[Site]:
        """Set crawl status; ``active`` stamps last_crawled_at and clears any error."""
        with self.session_factory() as db:
            site = db.get(Site, site_id)
            if site is None:
                return None
            site.status = status
            if status == "active":
                site.last_crawled_at = datetime.now(timezone.utc)
                site.error_message = None
            elif status == "error":
                site.error_message = error_message
            db.commit()
            db.refresh(site)
            return site

    def delete(self, site_id: str) -> None:
        with self.session_factory() as db:
            for model in (ChatRating, ChatMessage, UnansweredQuestion, WidgetSession, KnowledgeChunk, ApiKey):
                db.query(model).filter(model.site_id == site_id).delete(synchronize_session=False)
            db.query(Site).filter(Site.id == site_id).delete(synchronize_session=False)
            db.commit()


class ApiKeyRepository(_Repository):
    def create(self, site_id: str, key: str) -> ApiKey:
        with self.session_factory() as db:
            api_key = ApiKey(site_id=site_id, key=key)
            db.add(api_key)
            db.commit()
            db.refresh(api_key)
            return api_key

    def find_by_key(self, key: str) -> Optional[ApiKey]:
        with self.session_factory() as db:
            return db.query(ApiKey).filter(ApiKey.key == key).first()


class KnowledgeChunkRepository(_Repository):
    def create_many(self, records: List[Dict[str, Any]]) -> int:
        if not records:
            return 0
        with self.session_factory() as db:
            db.add_all([
                KnowledgeChunk(
                    site_id=r["site_id"],
                    page_url=r["page_url"],
                    content=r["content"],
                    heading=r.get("heading"),
                    vector_id=r["vector_id"],
                    chunk_index=r.get("chunk_index", 0),
                )
                for r in records
            ])
            db.commit()
        return len(records)

    def delete_by_site(self, site_id: str) -> int:
        with self.session_factory() as db:
            deleted = db.query(KnowledgeChunk).filter(KnowledgeChunk.site_id == site_id).delete(
                synchronize_session=False
            )
            db.commit()
            return deleted

    def count_by_site(self, site_id: str) -> int:
        with self.session_factory() as db:
            return db.query(KnowledgeChunk).filter(KnowledgeChunk.site_id == site_id).count()


class WidgetSessionRepository(_Repository):
    def upsert(self, session_id: str, site_id: str, ip_address_hash: str,
               user_email: Optional[str] = None) -> WidgetSession:
        with self.session_factory() as db:
            session = db.get(WidgetSession, session_id)
            if session is None:
                session = WidgetSession(
                    id=session_id,
                    site_id=site_id,
                    ip_address_hash=ip_address_hash,
                    user_email=user_email,
                )
                db.add(session)
            else:
                session.last_seen_at = datetime.now(timezone.utc)
                if user_email:
                    session.user_email = user_email
            db.commit()
            db.refresh(session)
            return session

    def increment_message_count(self, session_id: str) -> None:
        with self.session_factory() as db:
            db.query(WidgetSession).filter(WidgetSession.id == session_id).update(
                {WidgetSession.messages_count: WidgetSession.messages_count + 1},
                synchronize_session=False,
            )
            db.commit()

    def find_by_id(self, session_id: str) -> Optional[WidgetSession]:
        with self.session_factory() as db:
            return db.get(WidgetSession, session_id)


class ChatMessageRepository(_Repository):
    def create(self, site_id: str, session_id: str, message: str, response: str,
               response_time_ms: int) -> ChatMessage:
        with self.session_factory() as db:
            chat_message = ChatMessage(
                site_id=site_id,
                session_id=session_id,
                message=message,
                response=response,
                response_time_ms=response_time_ms,
            )
            db.add(chat_message)
            db.commit()
            db.refresh(chat_message)
            return chat_message

    def find_by_id(self, message_id: str) -> Optional[ChatMessage]:
        with self.session_factory() as db:
            return db.get(ChatMessage, message_id)

    def find_by_session(self, session_id: str, limit: int = 10) -> List[ChatMessage]:
        """Most recent messages of a session, oldest first."""
        with self.session_factory() as db:
            rows = (
                db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
                .all()
            )
            return list(reversed(rows))

    def count(self) -> int:
        with self.session_factory() as db:
            return db.query(ChatMessage).count()


class ChatRatingRepository(_Repository):
    def create(self, chat_message_id: str, site_id: str, session_id: str, rating: str,
               feedback: Optional[str] = None) -> ChatRating:
        with self.session_factory() as db:
            chat_rating = ChatRating(
                chat_message_id=chat_message_id,
                site_id=site_id,
                session_id=session_id,
                rating=rating,
                feedback=feedback,
            )
            db.add(chat_rating)
            db.commit()
            db.refresh(chat_rating)
            return chat_rating

    def find_by_message_id(self, chat_message_id: str) -> Optional[ChatRating]:
        with self.session_factory() as db:
            return db.query(ChatRating).filter(ChatRating.chat_message_id == chat_message_id).first()


class UnansweredQuestionRepository(_Repository):
    def create(self, site_id: str, session_id: str, question: str, best_match_score: float,
               user_email: Optional[str] = None) -> UnansweredQuestion:
        with self.session_factory() as db:
            unanswered = UnansweredQuestion(
                site_id=site_id,
                session_id=session_id,
                question=question,
                best_match_score=best_match_score,
                user_email=user_email,
            )
            db.add(unanswered)
            db.commit()
            db.refresh(unanswered)
            return unanswered

    def find_by_id(self, question_id: str) -> Optional[UnansweredQuestion]:
        with self.session_factory() as db:
            return db.get(UnansweredQuestion, question_id)

    def update_email(self, question_id: str, email: str) -> Optional[UnansweredQuestion]:
        with self.session_factory() as db:
            unanswered = db.get(UnansweredQuestion, question_id)
            if unanswered is None:
                return None
            unanswered.user_email = email
            db.commit()
            db.refresh(unanswered)
            return unanswered
