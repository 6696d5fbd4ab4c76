from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gtd_agent.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    phone: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York", nullable=False)
    digest_time: Mapped[str] = mapped_column(String(5), default="08:00", nullable=False)
    meeting_reminder_hours: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    weekly_review_day: Mapped[str] = mapped_column(String(16), default="sunday", nullable=False)
    weekly_review_time: Mapped[str] = mapped_column(String(5), default="17:00", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)
    total_tasks_captured: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)

    tasks = relationship("Task", back_populates="user")
    people = relationship("Person", back_populates="user")
