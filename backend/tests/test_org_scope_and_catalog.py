from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app import deps
from backend.app.catalog import average_quantity_per_unit, load_catalog, load_tax_rates
from backend.app.routers import taxes as taxes_router


ORG = "6f1c1d5e-9a53-4c8e-9b0e-2f6a3c1d7e11"


def test_org_header_must_be_a_uuid():
    assert deps.get_org_id(x_organization_id=ORG.upper(), x_organization_slug=None) == ORG
    with pytest.raises(HTTPException) as exc_info:
        deps.get_org_id(x_organization_id="not-a-uuid", x_organization_slug=None)
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException) as exc_info:
        deps.get_org_id(x_organization_id=None, x_organization_slug="  ")
    assert exc_info.value.detail == "missing organization id"


def test_org_slug_is_resolved(monkeypatch):
    monkeypatch.setattr(deps, "_resolve_org_slug", lambda slug: ORG if slug == "acme" else None)
    assert deps.get_org_id(x_organization_id=None, x_organization_slug=" ACME ") == ORG


def test_actor_id_is_optional():
    assert deps.get_actor_id(None) is None
    assert deps.get_actor_id("garbage") is None
    assert deps.get_actor_id(ORG) == ORG


class _RowsCursor:
    def __init__(self, rows):
        self._rows = rows
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append(params)

    def fetchall(self):
        return self._rows


def test_average_measure_only_for_measured_products_counting_units():
    assert average_quantity_per_unit("KG", True, Decimal("25"), Decimal("10")) == Decimal("2.500000")
    assert average_quantity_per_unit("UN", True, Decimal("25"), Decimal("10")) is None
    assert average_quantity_per_unit("KG", False, Decimal("25"), Decimal("10")) is None
    assert average_quantity_per_unit("KG", True, Decimal("25"), Decimal("0")) is None


def test_load_catalog_reports_missing_products():
    cur = _RowsCursor([{"id": "p1", "name": "Ham", "unit_of_measure": "kg", "tracks_stock_units": True,
                        "units_per_box": None, "boxes_per_pallet": None,
                        "total_quantity": Decimal("30"), "total_units": Decimal("12")}])
    catalog = load_catalog(cur, "org", ["p1"])
    assert catalog["p1"].is_measured
    assert catalog["p1"].average_quantity_per_unit == Decimal("2.500000")
    with pytest.raises(HTTPException) as exc_info:
        load_catalog(cur, "org", ["p1", "p2"])
    assert exc_info.value.code == "product_not_found"


def test_load_tax_rates_keeps_request_order_and_drops_repeats():
    cur = _RowsCursor([
        {"id": "t2", "name": "Perception", "rate": Decimal("3")},
        {"id": "t1", "name": "VAT", "rate": Decimal("21")},
    ])
    taxes = load_tax_rates(cur, "org", ["t1", "t2", "t1"])
    assert [t.tax_id for t in taxes] == ["t1", "t2"]
    assert cur.executed[0][1] == ["t1", "t2"]
    with pytest.raises(HTTPException):
        load_tax_rates(cur, "org", ["t3"])


@pytest.mark.parametrize("rate", ["-1", "100.01"])
def test_tax_rate_must_be_a_percentage(rate):
    with pytest.raises(HTTPException) as exc_info:
        taxes_router.create_tax(taxes_router.TaxIn(name="VAT", rate=Decimal(rate)), organization_id="org", actor_id=None)
    assert exc_info.value.code == "invalid_tax_rate"


def test_tax_name_is_required():
    with pytest.raises(HTTPException) as exc_info:
        taxes_router.create_tax(taxes_router.TaxIn(name="  ", rate=Decimal("21")), organization_id="org", actor_id=None)
    assert exc_info.value.code == "missing_tax_name"
