"""
Fine catalogue browsing, search and administration
"""

from decimal import Decimal

import pytest

from models.enums import Language, SeverityLevel
from models.fines import FeeStructureRequest, FineTypeCreateRequest, FineTypeUpdateRequest, ViolationCreateRequest
from services.base_service import ErrorType
from fakes import make_fine_catalogue


@pytest.fixture
def radar(fines_repo):
    return make_fine_catalogue(fines_repo)


class TestCatalogue:

    @pytest.mark.asyncio
    async def test_subcategories_count_active_types(self, fines_service, radar):
        result = await fines_service.list_subcategories("traffic")

        assert [(s.id, s.fine_count) for s in result.data] == [("speeding", 1)]

    @pytest.mark.asyncio
    async def test_unknown_category(self, fines_service, radar):
        result = await fines_service.list_subcategories("parking")
        assert result.error_type == ErrorType.NOT_FOUND

    @pytest.mark.asyncio
    async def test_arabic_names(self, fines_service, radar):
        result = await fines_service.list_fine_types("speeding", Language.AR)

        assert [t.name for t in result.data] == ["تجاوز السرعة"]
        # No Arabic description, English one kept
        assert result.data[0].description == "Caught by a fixed radar"

    @pytest.mark.asyncio
    async def test_browse_nests_subcategories(self, fines_service, radar):
        result = await fines_service.browse()

        tree = result.data
        assert [c["id"] for c in tree] == ["traffic"]
        assert [s.id for s in tree[0]["subcategories"]] == ["speeding"]

    @pytest.mark.asyncio
    async def test_fine_type_detail(self, fines_service, radar):
        result = await fines_service.get_fine_type("radar")

        detail = result.first
        assert detail["fine_type"].id == "radar"
        assert detail["subcategory"].id == "speeding"
        assert detail["category"].id == "traffic"


class TestSearch:

    @pytest.mark.asyncio
    async def test_keyword_match_skips_inactive(self, fines_service, radar):
        result = await fines_service.search("RADAR")
        assert [t.id for t in result.data] == ["radar"]

    @pytest.mark.asyncio
    async def test_falls_back_to_description(self, fines_service, radar):
        result = await fines_service.search("fixed")
        assert [t.id for t in result.data] == ["radar"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", [None, "", " r "])
    async def test_short_query(self, fines_service, query):
        result = await fines_service.search(query)
        assert result.error_type == ErrorType.VALIDATION_ERROR


class TestAdministration:

    @pytest.mark.asyncio
    async def test_only_admins(self, fines_service, billing_actor, radar):
        result = await fines_service.admin_list_fine_types(billing_actor)
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR

    @pytest.mark.asyncio
    async def test_create_and_update(self, fines_service, admin_actor, radar):
        created = await fines_service.create_fine_type(admin_actor, FineTypeCreateRequest(
            name="Red light", category="traffic", subcategory_id="speeding", keywords=["signal"]
        ))
        updated = await fines_service.update_fine_type(
            admin_actor, created.first.id, FineTypeUpdateRequest(is_active=False)
        )

        assert created.first.is_active
        assert not updated.first.is_active
        empty = await fines_service.update_fine_type(admin_actor, created.first.id, FineTypeUpdateRequest())
        assert empty.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_unknown_subcategory(self, fines_service, admin_actor):
        result = await fines_service.create_fine_type(admin_actor, FineTypeCreateRequest(
            name="Red light", category="traffic", subcategory_id="nowhere"
        ))
        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_fee_structure_upsert(self, fines_service, admin_actor, radar):
        request = FeeStructureRequest(
            fine_type_id="radar", min_fine=Decimal("300"), max_fine=Decimal("900"),
            platform_commission_percentage=Decimal("15"), lawyer_commission_percentage=Decimal("60")
        )

        first = await fines_service.set_fee_structure(admin_actor, request)
        second = await fines_service.set_fee_structure(admin_actor, request)

        assert first.message == "Fee structure created"
        assert second.message == "Fee structure updated"
        listed = await fines_service.admin_list_fine_types(admin_actor)
        assert listed.data[0].fee_structure.max_fine == Decimal("900")

    @pytest.mark.asyncio
    async def test_fee_structure_bounds(self, fines_service, admin_actor, radar):
        inverted = await fines_service.set_fee_structure(admin_actor, FeeStructureRequest(
            fine_type_id="radar", min_fine=Decimal("900"), max_fine=Decimal("300")
        ))
        overpaid = await fines_service.set_fee_structure(admin_actor, FeeStructureRequest(
            fine_type_id="radar", platform_commission_percentage=Decimal("50"),
            lawyer_commission_percentage=Decimal("60")
        ))

        assert inverted.error_type == ErrorType.VALIDATION_ERROR
        assert overpaid.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_violations_by_severity(self, fines_service, admin_actor, radar):
        for name, severity in (("Over 40", SeverityLevel.SEVERE), ("Over 10", SeverityLevel.MINOR)):
            await fines_service.create_violation(admin_actor, ViolationCreateRequest(
                fine_type_id="radar", violation_name=name, severity_level=severity
            ))

        result = await fines_service.list_violations(admin_actor, "radar")

        assert [v.violation_name for v in result.data] == ["Over 10", "Over 40"]

    @pytest.mark.asyncio
    async def test_violation_on_inactive_type(self, fines_service, admin_actor, radar):
        result = await fines_service.create_violation(admin_actor, ViolationCreateRequest(
            fine_type_id="retired", violation_name="Over 10"
        ))
        assert result.error_type == ErrorType.VALIDATION_ERROR
