# storefront/tokens.py
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models import RefreshToken, utcnow


class RefreshTokenStore:
    """Server-side record of issued refresh tokens.

    Expired rows are treated as absent by lookups; they are not deleted
    eagerly, ``purge_expired`` can be run out of band.
    """

    def create(self, session: Session, user_id: int, token: str, expires_at: datetime) -> RefreshToken:
        record = RefreshToken(user_id=user_id, token=token, expires_at=expires_at)
        session.add(record)
        session.flush()
        return record

    def get_valid(self, session: Session, token: str, now: Optional[datetime] = None) -> Optional[RefreshToken]:
        now = now or utcnow()
        return session.scalars(
            select(RefreshToken).where(RefreshToken.token == token, RefreshToken.expires_at > now)
        ).one_or_none()

    def delete_by_token(self, session: Session, token: str) -> int:
        result = session.execute(
            delete(RefreshToken).where(RefreshToken.token == token).execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_by_id(self, session: Session, token_id: int) -> int:
        result = session.execute(
            delete(RefreshToken).where(RefreshToken.id == token_id).execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge_expired(self, session: Session, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        result = session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at <= now).execution_options(synchronize_session=False)
        )
        return result.rowcount
