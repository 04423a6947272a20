"""
Users service - administrative changes to user profiles
"""

import logging

from database.connection import Database, get_database
from models.user import QuotaUpdateRequest
from repositories.users import UsersRepository
from services.base_service import BaseService, ServiceResult
from utils.auth import AuthContext

logger = logging.getLogger(__name__)


class UsersService(BaseService):

    def __init__(self, db: Database, users: UsersRepository):
        self.db = db
        self.users = users

    async def update_quota(self, actor: AuthContext, user_id: str, request: QuotaUpdateRequest) -> ServiceResult:
        """Override a user's monthly case allowance; cases already used this month are kept"""
        if not self.can(actor, "users:manage_quota"):
            return self.forbidden("Only administrators can change user quotas")
        try:
            updated = await self.users.set_quota_limit(user_id, request.cases_per_month)
        except Exception as e:
            return self.server_error("Quota update", e)
        if updated is None:
            return self.not_found("User")
        logger.info(f"Quota for user {user_id} set to {request.cases_per_month} by {actor.user_id}")
        return ServiceResult.ok(updated, message="User quota updated successfully")


# Global users service instance
_users_service = None


def get_users_service() -> UsersService:
    """Get the global users service instance"""
    global _users_service
    if _users_service is None:
        db = get_database()
        _users_service = UsersService(db, UsersRepository(db))
    return _users_service
