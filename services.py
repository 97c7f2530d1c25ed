from __future__ import annotations

import logging
import math
from datetime import datetime, time, timedelta
from typing import Optional

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import errors
from auth import TokenService, UserIdentity, hash_password, verify_password
from models import Transaction, TransactionCategory, User
from schemas import (
    AuthOut,
    PublicUser,
    TransactionAck,
    TransactionFilterIn,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdateIn,
)

logger = logging.getLogger(__name__)


def _db_operation(operation: str, table: str, **fields: object) -> None:
    extra = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.debug(f"db_operation: op={operation} table={table} {extra}".rstrip())


class CredentialService:
    def __init__(self, session: Session, tokens: TokenService) -> None:
        self.session = session
        self.tokens = tokens

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def _auth_result(self, user: User) -> AuthOut:
        identity = UserIdentity(id=user.id, email=user.email)
        return AuthOut(
            token=self.tokens.issue(identity),
            user=PublicUser(id=user.id, email=user.email),
        )

    def register(self, email: str, password: str) -> AuthOut:
        _db_operation("find_one", "users", purpose="check_existing_user")
        if self._find_by_email(email) is not None:
            raise errors.duplicate(
                "User with this email already exists", operation="register"
            )

        user = User(
            email=email,
            password_hash=hash_password(password),
            created_at=datetime.utcnow(),
        )
        self.session.add(user)
        _db_operation("insert_one", "users", purpose="create_user")
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if not errors.is_unique_violation(exc):
                raise
            raise errors.duplicate(
                "User with this email already exists", operation="register"
            ) from exc
        return self._auth_result(user)

    def login(self, email: str, password: str) -> AuthOut:
        _db_operation("find_one", "users", purpose="login_attempt")
        user = self._find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            raise errors.invalid_credentials(operation="login")
        return self._auth_result(user)

    def get_self(self, identity: Optional[UserIdentity]) -> Optional[PublicUser]:
        if identity is None:
            return None
        user = self.session.get(User, identity.id)
        if user is None:
            return None
        return PublicUser(id=user.id, email=user.email)


class TransactionService:
    """Transactions of exactly one owner.

    Every statement starts from ``_scoped()``, which already filters on the
    owner, so an id belonging to someone else behaves like an unknown id.
    """

    def __init__(self, session: Session, owner_id: str) -> None:
        if not owner_id:
            raise ValueError("owner_id is required")
        self.session = session
        self.owner_id = owner_id

    def _scoped(self) -> Select:
        return select(Transaction).where(Transaction.user_id == self.owner_id)

    def _find(self, transaction_id: str) -> Optional[Transaction]:
        return self.session.scalar(
            self._scoped().where(Transaction.id == transaction_id)
        )

    def _not_found(self, operation: str, transaction_id: str) -> errors.AppError:
        return errors.not_found(
            "Transaction",
            operation=operation,
            user_id=self.owner_id,
            resource_id=transaction_id,
        )

    def add(self, data: TransactionIn) -> TransactionAck:
        txn = Transaction(
            user_id=self.owner_id,
            type=data.type,
            amount=data.amount,
            description=data.description,
            created_at=data.date,
            updated_at=data.date,
        )
        txn.category = list(data.category)
        self.session.add(txn)
        _db_operation(
            "insert_one",
            "transactions",
            user_id=self.owner_id,
            type=data.type.value,
        )
        self.session.commit()
        return TransactionAck(acknowledged=True, inserted_id=txn.id)

    def update(self, data: TransactionUpdateIn) -> TransactionAck:
        changes = data.changes()
        _db_operation(
            "update_one",
            "transactions",
            user_id=self.owner_id,
            transaction_id=data.id,
            fields=",".join(sorted(changes)) or "-",
        )
        txn = self._find(data.id)
        if txn is None:
            raise self._not_found("update", data.id)

        if "type" in changes:
            txn.type = changes["type"]
        if "amount" in changes:
            txn.amount = changes["amount"]
        if "category" in changes:
            txn.category = list(changes["category"])
        if "description" in changes:
            txn.description = changes["description"]
        if "date" in changes:
            txn.created_at = changes["date"]
        txn.updated_at = datetime.utcnow()

        self.session.commit()
        return TransactionAck(acknowledged=True, inserted_id=txn.id)

    def delete(self, transaction_id: str) -> TransactionAck:
        _db_operation(
            "delete_one",
            "transactions",
            user_id=self.owner_id,
            transaction_id=transaction_id,
        )
        txn = self._find(transaction_id)
        if txn is None:
            raise self._not_found("delete", transaction_id)
        self.session.delete(txn)
        self.session.commit()
        return TransactionAck(acknowledged=True)

    def get(self, transaction_id: str) -> TransactionOut:
        _db_operation(
            "find_one",
            "transactions",
            user_id=self.owner_id,
            transaction_id=transaction_id,
        )
        txn = self._find(transaction_id)
        if txn is None:
            raise self._not_found("get", transaction_id)
        return TransactionOut.model_validate(txn)

    def list(self, filters: TransactionFilterIn) -> TransactionPage:
        page = filters.pagination.page
        page_size = filters.pagination.page_size

        stmt = self._scoped()
        if filters.type is not None:
            stmt = stmt.where(Transaction.type == filters.type)
        for label in filters.category or []:
            stmt = stmt.where(Transaction.labels.any(TransactionCategory.label == label))
        if filters.created_at is not None:
            start = datetime.combine(filters.created_at, time.min)
            stmt = stmt.where(
                Transaction.created_at >= start,
                Transaction.created_at < start + timedelta(days=1),
            )

        _db_operation(
            "aggregate",
            "transactions",
            user_id=self.owner_id,
            page=page,
            page_size=page_size,
        )
        total_count = int(
            self.session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
        )
        rows = self.session.scalars(
            stmt.order_by(Transaction.created_at.asc(), Transaction.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()

        return TransactionPage(
            transactions=[TransactionOut.model_validate(txn) for txn in rows],
            total_count=total_count,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total_count / page_size),
        )
