"""User directory lookups for notification recipients."""
import logging
from typing import List

from sqlalchemy.orm import Session

from app.models.user_profile import UserProfile

logger = logging.getLogger(__name__)


class UserDirectory:
    """Read-only view of active user profiles per organization."""

    def list_active_profiles(self, db: Session, organization_id: str) -> List[UserProfile]:
        return db.query(UserProfile).filter(
            UserProfile.organization_id == organization_id,
            UserProfile.is_active == True,  # noqa: E712
        ).order_by(UserProfile.created_at).all()

    def list_active_users(self, db: Session, organization_id: str) -> List[str]:
        """Ids of all active users in an organization."""
        user_ids = [profile.id for profile in self.list_active_profiles(db, organization_id)]
        logger.debug(
            f"Resolved {len(user_ids)} active users",
            extra={"organization_id": organization_id, "user_count": len(user_ids)}
        )
        return user_ids
