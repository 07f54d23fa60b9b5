import asyncio
from datetime import date, timedelta
from pathlib import Path

import pytest

from app.services.excel_manager import ExcelManager
from app.utils.nepal_date import ad_to_bs, get_current_fiscal_year

from conftest import paid_bill

TODAY = date.today().isoformat()


@pytest.fixture
def sale(client, headers, table, menu) -> dict:
    return paid_bill(client, headers, table, menu, buyer_name="Sita Sharma")["invoice"]


@pytest.fixture
def purchases(client, headers) -> list[dict]:
    """One vendor bill kept, one cancelled."""
    vendor = client.post("/api/vendors", json={"name": "Bhatbhateni Supplies", "pan_number": "601234567"},
                         headers=headers).json()
    created = []
    for rate in (1000, 400):
        created.append(client.post(
            "/api/purchases",
            json={"vendor_id": vendor["id"], "items": [{"description": "Cooking Oil", "quantity": 1, "rate": rate}]},
            headers=headers,
        ).json()["purchase"])
    client.post(f"/api/purchases/{created[1]['id']}/cancel", headers=headers)
    return created


def _range(days_back: int = 0) -> dict:
    return {"from_date": (date.today() - timedelta(days=days_back)).isoformat(), "to_date": TODAY}


# =============================================================================
# REGISTERS
# =============================================================================

def test_sales_register(client, headers, sale) -> None:
    register = client.get("/api/reports/ird/sales-register", params=_range(), headers=headers).json()

    header = register["header"]
    assert header["report"] == "SALES_REGISTER"
    assert header["restaurant_name"] == "Himalayan Kitchen"
    assert header["seller_pan"] == "123456789"
    assert header["from_date_bs"] == ad_to_bs(date.today())

    [entry] = register["entries"]
    assert entry["invoice_number"] == sale["invoice_number"]
    assert entry["buyer_name"] == "Sita Sharma"
    assert entry["date_ad"] == TODAY

    summary = register["summary"]
    assert (summary["total_invoices"], summary["total_active"], summary["grand_total"]) == (1, 1, 1045.5)
    assert (summary["total_vat"], summary["cbms_pending_count"]) == (110.5, 1)


def test_cancelled_invoices_stay_in_sales_register(client, headers, sale) -> None:
    client.post(f"/api/invoices/{sale['id']}/cancel", json={"reason": "Void"}, headers=headers)
    register = client.get("/api/reports/ird/sales-register", params=_range(), headers=headers).json()

    assert [e["status"] for e in register["entries"]] == ["CANCELLED"]
    summary = register["summary"]
    assert (summary["total_cancelled"], summary["grand_total"], summary["cbms_pending_count"]) == (1, 0.0, 0)


def test_register_rejects_reversed_range(client, headers) -> None:
    resp = client.get(
        "/api/reports/ird/sales-register",
        params={"from_date": TODAY, "to_date": (date.today() - timedelta(days=1)).isoformat()},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Start date must be on or before end date"


def test_purchase_register_skips_cancelled(client, headers, purchases) -> None:
    register = client.get("/api/reports/ird/purchase-register", params=_range(7), headers=headers).json()

    assert [e["purchase_number"] for e in register["entries"]] == [purchases[0]["purchase_number"]]
    assert register["entries"][0]["vendor_pan"] == "601234567"
    assert register["summary"] == {
        "total_purchases": 1, "total_taxable": 1000.0, "total_vat": 130.0, "grand_total": 1130.0
    }


# =============================================================================
# VAT
# =============================================================================

def test_monthly_vat_report(client, headers, sale) -> None:
    report = client.get("/api/reports/ird/vat", headers=headers).json()

    assert report["header"]["fiscal_year"] == get_current_fiscal_year()
    assert [row["month"] for row in report["data"]] == [4, 5, 6, 7, 8, 9, 10, 11, 12, 1, 2, 3]
    assert sum(row["invoice_count"] for row in report["data"]) == 1
    assert report["summary"]["total_vat_collected"] == 110.5
    assert report["summary"]["effective_vat_rate"] == 13.0


def test_daily_and_summary_vat_reports(client, headers, sale) -> None:
    daily = client.get("/api/reports/ird/vat", params={"report_type": "daily"}, headers=headers).json()
    assert [(row["date"], row["total_vat"]) for row in daily["data"]] == [(TODAY, 110.5)]

    summary = client.get("/api/reports/ird/vat", params={"report_type": "summary"}, headers=headers).json()
    assert summary["breakdown"]["total_invoices"] == 1
    assert len(summary["breakdown"]["by_month"]) == 12


def test_vat_report_validates_arguments(client, headers) -> None:
    bad_type = client.get("/api/reports/ird/vat", params={"report_type": "weekly"}, headers=headers)
    assert bad_type.status_code == 400
    bad_month = client.get("/api/reports/ird/vat", params={"month": 13}, headers=headers)
    assert bad_month.json()["error"] == "Month must be between 1 and 12"


# =============================================================================
# EXCEL EXPORT
# =============================================================================

def test_sales_register_export(client, headers, sale) -> None:
    result = client.post("/api/reports/ird/sales-register/export", params=_range(), headers=headers).json()
    assert result["success"] is True
    assert result["rows"] == 1

    path = Path(result["path"])
    assert path.exists()
    assert path.name == f"sales_register_himalayan-kitchen_{TODAY}_{TODAY}.xlsx"
    assert [row["invoice_number"] for row in ExcelManager.read_register(path)] == [sale["invoice_number"]]


def test_export_runs_off_the_event_loop(client, headers, sale, monkeypatch) -> None:
    original = ExcelManager.export_sales_register
    seen = []

    def export(*args):
        try:
            asyncio.get_running_loop()
            seen.append("event loop")
        except RuntimeError:
            seen.append("worker thread")
        return original(*args)

    monkeypatch.setattr(ExcelManager, "export_sales_register", export)
    result = client.post("/api/reports/ird/sales-register/export", params=_range(), headers=headers).json()
    assert result["success"] is True
    assert seen == ["worker thread"]


def test_purchase_register_export(client, headers, purchases) -> None:
    result = client.post("/api/reports/ird/purchase-register/export", params=_range(), headers=headers).json()
    assert result["success"] is True
    rows = ExcelManager.read_register(Path(result["path"]))
    assert [row["vendor_name"] for row in rows] == ["Bhatbhateni Supplies"]
