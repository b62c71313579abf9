"""SQLModel implementation of the User repository."""

from __future__ import annotations

from typing import Optional

from sqlmodel import Session, select

from ...models.user import PAID_ACCOUNT_TYPES, User


class SQLModelUserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        return self.session.exec(select(User).where(User.email == email)).first()

    def list_paid(self) -> list[User]:
        """Users currently on a paid tier."""
        statement = (
            select(User)
            .where(User.account_type.in_(sorted(PAID_ACCOUNT_TYPES)))  # type: ignore[attr-defined]
            .order_by(User.id)  # type: ignore
        )
        return list(self.session.exec(statement).all())

    def save(self, user: User) -> User:
        user.email = user.email.strip().lower()
        self.session.add(user)
        self.session.flush()
        self.session.refresh(user)
        return user
