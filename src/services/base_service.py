"""
Base service layer: uniform result type and error taxonomy shared by all services
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from config.permissions import has_capability
from utils.auth import AuthContext

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    """Machine-checkable failure kinds surfaced to callers"""
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


class StaleWriteError(Exception):
    """A guarded write found the row changed underneath it; aborts the transaction"""


class CapacityExhaustedError(Exception):
    """A lawyer filled up between the read and the reservation; aborts the transaction"""


@dataclass
class ServiceResult:
    """Result from service operation"""
    success: bool
    data: Optional[List[Any]] = None
    count: int = 0
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    page_info: Optional[Dict[str, Any]] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, *items: Any, page_info: Optional[Dict[str, Any]] = None,
           message: Optional[str] = None) -> "ServiceResult":
        return cls(success=True, data=list(items), count=len(items), page_info=page_info, message=message)

    @classmethod
    def ok_list(cls, items: List[Any], page_info: Optional[Dict[str, Any]] = None) -> "ServiceResult":
        return cls(success=True, data=list(items), count=len(items), page_info=page_info)

    @classmethod
    def fail(cls, error_type: ErrorType, error: str) -> "ServiceResult":
        return cls(success=False, error=error, error_type=error_type)

    @property
    def first(self) -> Any:
        return self.data[0] if self.data else None


class BaseService:
    """Common helpers for services acting on behalf of an authenticated actor"""

    @staticmethod
    def can(actor: AuthContext, capability: str) -> bool:
        return has_capability(actor.role, capability)

    @staticmethod
    def not_found(entity: str) -> ServiceResult:
        return ServiceResult.fail(ErrorType.NOT_FOUND, f"{entity} not found")

    @staticmethod
    def forbidden(message: str = "Not authorized") -> ServiceResult:
        return ServiceResult.fail(ErrorType.AUTHORIZATION_ERROR, message)

    @staticmethod
    def invalid(message: str) -> ServiceResult:
        return ServiceResult.fail(ErrorType.VALIDATION_ERROR, message)

    @staticmethod
    def conflict(message: str) -> ServiceResult:
        return ServiceResult.fail(ErrorType.CONFLICT_ERROR, message)

    @staticmethod
    def server_error(operation: str, exc: Exception) -> ServiceResult:
        logger.error(f"{operation} failed: {exc}", exc_info=True)
        return ServiceResult.fail(ErrorType.SERVER_ERROR, f"{operation} failed: {exc}")
