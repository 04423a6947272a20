"""
Success envelopes returned by the API routes
"""

from typing import Any, Dict, Optional

from services.base_service import ServiceResult
from utils.error_handling import raise_for_result


def success_response(result: ServiceResult, message: Optional[str] = None) -> Dict[str, Any]:
    """`{success, data, message?}` for a single-item result; failed results raise"""
    raise_for_result(result)
    response = {"success": True, "data": result.first}
    message = message or result.message
    if message:
        response["message"] = message
    return response


def list_response(result: ServiceResult) -> Dict[str, Any]:
    """`{success, data, count, pagination?}` for a list result; failed results raise"""
    raise_for_result(result)
    response = {"success": True, "data": result.data or [], "count": result.count}
    if result.page_info is not None:
        response["pagination"] = result.page_info
    return response
