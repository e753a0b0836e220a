import hashlib
import secrets
from typing import Annotated, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from sync_api import get_logger
from sync_api.models import db
from sync_api.models.db import DbSession
from sync_common import Service

LOG = get_logger(__name__)


class AuthService(Service):
    """Resolves bearer tokens to user ids. Tokens are issued by the account system, see issue_token."""

    def __init__(self, session_factory: sessionmaker = DbSession):
        self.session_factory = session_factory

    @staticmethod
    def _hash(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def issue_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        with self.session_factory() as session:
            session.add(db.AccessToken(token_hash=self._hash(token), user_id=user_id))
            session.commit()
        LOG.info("Issued a new access token for user %s", user_id)
        return token

    def user_for_token(self, token: str) -> Optional[str]:
        with self.session_factory() as session:
            stmt = select(db.AccessToken.user_id).where(db.AccessToken.token_hash == self._hash(token))
            return session.scalar(stmt)


AuthServiceDep = Annotated[AuthService, AuthService.dep()]
