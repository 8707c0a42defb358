# storefront/users.py
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .core import UpdateProfileIn, UserOut, _make_user
from .database import Database
from .errors import NotFound
from .models import User, UserRole


class UserStore:
    def get_by_email(self, session: Session, email: str) -> Optional[User]:
        return session.scalars(select(User).where(User.email == email.lower())).one_or_none()

    def get_active_by_email(self, session: Session, email: str) -> Optional[User]:
        return session.scalars(
            select(User).where(User.email == email.lower(), User.is_active.is_(True))
        ).one_or_none()

    def get_by_id(self, session: Session, user_id: int) -> Optional[User]:
        return session.get(User, user_id)

    def create(self, session: Session, email: str, password_hash: str, first_name: str = "",
               last_name: str = "", phone: str = "", role: UserRole = UserRole.customer) -> User:
        user = User(
            email=email.lower(),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=role,
            is_active=True,
        )
        session.add(user)
        session.flush()
        return user

    def update(self, session: Session, user: User, **fields) -> User:
        for name, value in fields.items():
            setattr(user, name, value)
        session.flush()
        return user


class UserService:
    def __init__(self, db: Database, store: Optional[UserStore] = None):
        self.db = db
        self.store = store or UserStore()

    def get_profile(self, user_id: int) -> UserOut:
        with self.db.transaction() as session:
            user = self.store.get_by_id(session, user_id)
            if user is None:
                raise NotFound("user not found")
            return _make_user(user)

    def update_profile(self, user_id: int, req: UpdateProfileIn) -> UserOut:
        with self.db.transaction() as session:
            user = self.store.get_by_id(session, user_id)
            if user is None:
                raise NotFound("user not found")
            self.store.update(session, user, first_name=req.first_name, last_name=req.last_name, phone=req.phone)
            return _make_user(user)
