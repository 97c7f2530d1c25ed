import secrets
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

OBJECT_ID_LENGTH = 24


def new_object_id() -> str:
    return secrets.token_hex(OBJECT_ID_LENGTH // 2)


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Mapped[str] = mapped_column(
        String(OBJECT_ID_LENGTH), primary_key=True, default=new_object_id
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(OBJECT_ID_LENGTH), primary_key=True, default=new_object_id
    )
    user_id: Mapped[str] = mapped_column(
        String(OBJECT_ID_LENGTH), ForeignKey("users.id"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    labels: Mapped[list["TransactionCategory"]] = relationship(
        "TransactionCategory",
        order_by="TransactionCategory.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def category(self) -> list[str]:
        return [label.label for label in self.labels]

    @category.setter
    def category(self, labels: list[str]) -> None:
        # reuse rows by position so (transaction_id, position) never collides
        current = list(self.labels)
        for position, label in enumerate(labels):
            if position < len(current):
                current[position].label = label
            else:
                current.append(TransactionCategory(position=position, label=label))
        self.labels = current[: len(labels)]


class TransactionCategory(Base):
    __tablename__ = "transaction_categories"

    transaction_id: Mapped[str] = mapped_column(
        String(OBJECT_ID_LENGTH),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
