"""Queue entry model for the automation waiting queue."""

from typing_extensions import override

from sqlalchemy import BigInteger, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QueueEntry(Base):
    """One user's claim on an automation process type.

    Ordered by ``joined_at`` (epoch milliseconds), ties broken by ``id``.
    The unique constraint on ``user_id`` is what keeps concurrent joins from
    the same browser from producing duplicate rows.
    """

    __tablename__ = "automation_queue"  # pyright: ignore[reportUnannotatedClassAttribute]

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String, nullable=False, default="Guest")
    process_type: Mapped[str] = mapped_column(String, nullable=False, default="Coverage Plot")
    joined_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="Waiting")

    @override
    def __repr__(self) -> str:
        return (
            f"<QueueEntry(user_id={self.user_id}, process_type={self.process_type}, "
            f"joined_at={self.joined_at})>"
        )
