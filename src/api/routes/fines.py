"""
Public fine catalogue routes - categories, subcategories, fine types and search
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from models.enums import Language
from services.fines_service import FinesService, get_fines_service
from utils.responses import list_response, success_response

router = APIRouter()


@router.get("/categories")
async def list_categories(
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    return list_response(await service.list_categories(language))


@router.get("/categories/{category_id}/subcategories")
async def list_subcategories(
    category_id: str,
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    return list_response(await service.list_subcategories(category_id, language))


@router.get("/subcategories/{subcategory_id}/types")
async def list_fine_types(
    subcategory_id: str,
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    return list_response(await service.list_fine_types(subcategory_id, language))


@router.get("/search")
async def search_fine_types(
    query: Optional[str] = Query(None, description="Keyword, name or description text"),
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    return list_response(await service.search(query, language))


@router.get("/browse/all")
async def browse(
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    """Categories with their subcategories nested"""
    return list_response(await service.browse(language))


@router.get("/{fine_type_id}")
async def get_fine_type(
    fine_type_id: str,
    language: Language = Query(Language.EN),
    service: FinesService = Depends(get_fines_service)
):
    return success_response(await service.get_fine_type(fine_type_id, language))
