from datetime import date

import pytest


@pytest.fixture
def accounts(client, headers) -> dict:
    """Seeded chart keyed by account code."""
    return {a["account_code"]: a for a in client.get("/api/accounting/accounts", headers=headers).json()}


def _voucher(client, headers, voucher_type, debit_id, credit_id, amount, auto_post=False, credit_amount=None):
    return client.post(
        "/api/accounting/vouchers",
        json={
            "voucher_type": voucher_type,
            "narration": f"{voucher_type.title()} entry",
            "auto_post": auto_post,
            "entries": [
                {"account_id": debit_id, "debit": amount},
                {"account_id": credit_id, "credit": credit_amount if credit_amount is not None else amount},
            ],
        },
        headers=headers,
    )


def _balances(client, headers) -> dict:
    return {a["account_code"]: a["current_balance"]
            for a in client.get("/api/accounting/accounts", headers=headers).json()}


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

def test_seed_is_idempotent(client, headers, accounts) -> None:
    seeded = client.post("/api/accounting/accounts/seed", headers=headers).json()
    assert len(seeded) == len(accounts) == 13
    assert all(a["is_system"] for a in seeded)


def test_account_codes_are_unique(client, headers, accounts) -> None:
    dup = client.post(
        "/api/accounting/accounts",
        json={"account_code": "1000", "account_name": "Petty Cash", "account_group": "ASSETS", "account_type": "CASH"},
        headers=headers,
    )
    assert dup.status_code == 409

    group = client.get("/api/accounting/accounts", params={"group": "LIABILITIES"}, headers=headers).json()
    assert [a["account_code"] for a in group] == ["2000", "2100", "2200"]


def test_group_accounts_reject_postings(client, headers, accounts) -> None:
    parent = client.post(
        "/api/accounting/accounts",
        json={"account_code": "1500", "account_name": "Fixed Assets", "account_group": "ASSETS",
              "account_type": "FIXED_ASSET", "allow_posting": False},
        headers=headers,
    ).json()
    resp = _voucher(client, headers, "JOURNAL", parent["id"], accounts["3000"]["id"], 100)
    assert resp.status_code == 400
    assert "Fixed Assets" in resp.json()["error"]


# =============================================================================
# VOUCHERS
# =============================================================================

def test_unbalanced_voucher_is_rejected(client, headers, accounts) -> None:
    resp = _voucher(client, headers, "JOURNAL", accounts["1000"]["id"], accounts["3000"]["id"], 500, credit_amount=400)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Debits (500.00) must equal Credits (400.00)"


def test_draft_voucher_does_not_move_balances(client, headers, accounts) -> None:
    resp = _voucher(client, headers, "JOURNAL", accounts["1000"]["id"], accounts["3000"]["id"], 5000)
    assert resp.status_code == 201
    detail = resp.json()

    voucher = detail["voucher"]
    assert voucher["status"] == "DRAFT"
    assert voucher["voucher_number"].startswith("JRN-") and voucher["voucher_number"].endswith("-000001")
    assert voucher["total_amount"] == 5000.0
    assert [e["is_posted"] for e in detail["entries"]] == [False, False]
    assert _balances(client, headers)["1000"] == 0.0

    edited = client.patch(
        f"/api/accounting/vouchers/{voucher['id']}", json={"party_name": "Owner"}, headers=headers
    ).json()
    assert edited["party_name"] == "Owner"


def test_posting_updates_balances_and_locks_voucher(client, headers, accounts) -> None:
    voucher = _voucher(client, headers, "JOURNAL", accounts["1000"]["id"], accounts["3000"]["id"], 5000).json()["voucher"]

    posted = client.post(f"/api/accounting/vouchers/{voucher['id']}/post", headers=headers).json()
    assert posted["status"] == "POSTED"
    assert posted["posted_at"] is not None

    balances = _balances(client, headers)
    assert (balances["1000"], balances["3000"]) == (5000.0, 5000.0)

    assert client.post(f"/api/accounting/vouchers/{voucher['id']}/post", headers=headers).status_code == 400
    assert client.patch(
        f"/api/accounting/vouchers/{voucher['id']}", json={"narration": "x"}, headers=headers
    ).status_code == 400
    deleted = client.delete(f"/api/accounting/vouchers/{voucher['id']}", headers=headers)
    assert deleted.status_code == 400
    assert deleted.json()["error"] == "Only draft vouchers can be deleted"


def test_delete_draft_voucher(client, headers, accounts) -> None:
    voucher = _voucher(client, headers, "JOURNAL", accounts["1000"]["id"], accounts["3000"]["id"], 100).json()["voucher"]
    assert client.delete(f"/api/accounting/vouchers/{voucher['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/accounting/vouchers/{voucher['id']}", headers=headers).status_code == 404


def test_cancel_reverses_posted_voucher(client, headers, accounts) -> None:
    voucher = _voucher(
        client, headers, "RECEIPT", accounts["1000"]["id"], accounts["4000"]["id"], 3000, auto_post=True
    ).json()["voucher"]
    assert voucher["voucher_number"].startswith("RCT-")

    no_reason = client.post(f"/api/accounting/vouchers/{voucher['id']}/cancel", json={"reason": ""}, headers=headers)
    assert no_reason.status_code == 400

    cancelled = client.post(
        f"/api/accounting/vouchers/{voucher['id']}/cancel", json={"reason": "Entered twice"}, headers=headers
    ).json()
    assert cancelled["status"] == "CANCELLED"
    assert cancelled["cancellation_reason"] == "Entered twice"
    assert "[CANCELLED: Entered twice]" in cancelled["narration"]

    balances = _balances(client, headers)
    assert (balances["1000"], balances["4000"]) == (0.0, 0.0)

    trial = client.get("/api/accounting/trial-balance", headers=headers).json()
    assert trial["accounts"] == []
    assert trial["is_balanced"] is True

    assert client.post(f"/api/accounting/vouchers/{voucher['id']}/post", headers=headers).status_code == 400


# =============================================================================
# BOOKS
# =============================================================================

def test_ledger_day_book_and_statements(client, headers, accounts) -> None:
    cash, capital = accounts["1000"]["id"], accounts["3000"]["id"]
    _voucher(client, headers, "JOURNAL", cash, capital, 5000, auto_post=True)
    _voucher(client, headers, "PAYMENT", accounts["5000"]["id"], cash, 1200, auto_post=True)
    _voucher(client, headers, "RECEIPT", cash, accounts["4000"]["id"], 3000, auto_post=True)
    _voucher(client, headers, "JOURNAL", cash, capital, 999)

    ledger = client.get(f"/api/accounting/accounts/{cash}/ledger", headers=headers).json()
    assert [e["balance"] for e in ledger["entries"]] == [5000.0, 3800.0, 6800.0]
    assert (ledger["total_debit"], ledger["total_credit"], ledger["closing_balance"]) == (8000.0, 1200.0, 6800.0)

    today = date.today().isoformat()
    book = client.get("/api/accounting/day-book", params={"date": today}, headers=headers).json()
    assert book["total_vouchers"] == 4
    journal = next(g for g in book["groups"] if g["voucher_type"] == "JOURNAL")
    assert (journal["count"], journal["total"]) == (2, 5999.0)

    trial = client.get("/api/accounting/trial-balance", headers=headers).json()
    assert trial["is_balanced"] is True
    assert (trial["total_debit"], trial["total_credit"]) == (8000.0, 8000.0)

    pnl = client.get(
        "/api/accounting/profit-and-loss", params={"from_date": today, "to_date": today}, headers=headers
    ).json()
    assert (pnl["total_income"], pnl["total_expenses"], pnl["net_profit"]) == (3000.0, 1200.0, 1800.0)
    assert pnl["expenses"] == [{"account_code": "5000", "account_name": "Purchases", "amount": 1200.0}]


def test_vouchers_filter_by_type(client, headers, accounts) -> None:
    _voucher(client, headers, "JOURNAL", accounts["1000"]["id"], accounts["3000"]["id"], 100)
    _voucher(client, headers, "CONTRA", accounts["1010"]["id"], accounts["1000"]["id"], 50)

    contra = client.get("/api/accounting/vouchers", params={"voucher_type": "CONTRA"}, headers=headers).json()
    assert [v["voucher_number"][:4] for v in contra] == ["CTR-"]
    drafts = client.get("/api/accounting/vouchers", params={"status": "DRAFT"}, headers=headers).json()
    assert len(drafts) == 2
