from datetime import datetime

from sqlalchemy import JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from gtd_agent.database import Base


class UserContext(Base):
    """Durable part of the conversation context. The session lives in Redis."""

    __tablename__ = "user_contexts"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    preferences: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    patterns: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    entities: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)
