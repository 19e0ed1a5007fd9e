import logging
from typing import List, Optional

from sqlalchemy import desc

from app.domain.models import Profile
from app.domain.schemas import ProfileRecord
from app.infrastructure.database import SessionLocal
from app.interfaces.IProfileRepository import IProfileRepository

logger = logging.getLogger(__name__)

class PostgresProfileRepository(IProfileRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get_profile(self, profile_id: str) -> Optional[ProfileRecord]:
        if not profile_id:
            return None
        session = self.session_factory()
        try:
            profile = session.get(Profile, str(profile_id))
            return ProfileRecord.model_validate(profile) if profile else None
        finally:
            session.close()

    def list_by_role(self, role: str) -> List[ProfileRecord]:
        session = self.session_factory()
        try:
            rows = (
                session.query(Profile)
                .filter(Profile.role == role)
                .order_by(desc(Profile.updated_at))
                .all()
            )
            return [ProfileRecord.model_validate(p) for p in rows]
        finally:
            session.close()

    def tokens_by_role(self, role: str) -> List[str]:
        session = self.session_factory()
        try:
            rows = session.query(Profile.fcm_token).filter(
                Profile.role == role, Profile.fcm_token.isnot(None)
            ).all()
            return [token for (token,) in rows if token]
        finally:
            session.close()

    def all_tokens(self) -> List[str]:
        session = self.session_factory()
        try:
            rows = session.query(Profile.fcm_token).filter(Profile.fcm_token.isnot(None)).all()
            return [token for (token,) in rows if token]
        finally:
            session.close()
