"""Contract tests for the billing API endpoints."""

from decimal import Decimal


def post_payment(client, headers, plot_id, amount="5000", paid_at="2025-02-10", **extra):
    body = {"amount": amount, "paid_at": paid_at, "plot_id": plot_id, **extra}
    return client.post("/api/billing/payments", json=body, headers=headers)


class TestAccess:
    """Test staff role checks."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_mutation_without_role(self, client, plot):
        response = post_payment(client, {}, plot.id)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_mutation_with_resident_role(self, client, plot):
        response = post_payment(client, {"X-Staff-Role": "resident"}, plot.id)

        assert response.status_code == 403

    def test_reads_need_no_role(self, client, plot):
        assert client.get("/api/billing/payments").status_code == 200
        assert client.get(f"/api/billing/plots/{plot.id}/balance").status_code == 200


class TestPaymentsAndAllocations:
    """Test payment recording and allocation endpoints."""

    def test_create_payment(self, client, staff, plot):
        response = post_payment(client, staff, plot.id)

        assert response.status_code == 201
        payment = response.json()["payment"]
        assert Decimal(payment["amount"]) == Decimal("5000")
        assert payment["match_status"] == "matched"
        assert payment["matched_plot_id"] == plot.id
        assert payment["allocation_status"] == "unallocated"
        assert response.json()["warnings"] == []

    def test_invalid_payment_body(self, client, staff, plot):
        response = post_payment(client, staff, plot.id, amount="-1")

        assert response.status_code == 422

    def test_preview_then_auto_allocate(self, client, staff, plot, jan_feb_charges):
        jan, feb = jan_feb_charges
        payment_id = post_payment(client, staff, plot.id).json()["payment"]["id"]

        preview = client.post("/api/billing/allocations/preview", json={"payment_ids": [payment_id]})

        assert preview.status_code == 200
        lines = [(line["charge_id"], Decimal(line["amount"])) for line in preview.json()]
        assert lines == [(jan.id, Decimal("3000")), (feb.id, Decimal("2000"))]

        response = client.post("/api/billing/allocations/auto", json={}, headers=staff)

        assert response.status_code == 200
        assert response.json()["allocation_count"] == 2
        assert Decimal(response.json()["total_allocated"]) == Decimal("5000")
        listed = client.get("/api/billing/payments").json()
        assert listed[0]["allocation_status"] == "allocated"

    def test_manual_allocation_over_remaining(self, client, staff, plot, jan_feb_charges):
        jan, _ = jan_feb_charges
        payment_id = post_payment(client, staff, plot.id, amount="500").json()["payment"]["id"]

        response = client.post(
            "/api/billing/allocations/manual",
            json={"payment_id": payment_id, "charge_id": jan.id, "amount": "600"},
            headers=staff,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "insufficient_remaining"

    def test_manual_allocation_and_unapply(self, client, staff, plot, jan_feb_charges):
        jan, _ = jan_feb_charges
        payment_id = post_payment(client, staff, plot.id, amount="500").json()["payment"]["id"]

        created = client.post(
            "/api/billing/allocations/manual",
            json={"payment_id": payment_id, "charge_id": jan.id, "amount": "500"},
            headers=staff,
        )
        assert created.status_code == 201
        assert created.json()["allocations"][0]["kind"] == "manual"

        reversed_ = client.post(
            "/api/billing/allocations/unapply", json={"payment_id": payment_id}, headers=staff
        )

        assert reversed_.status_code == 200
        (reversal,) = reversed_.json()["allocations"]
        assert reversal["kind"] == "reversal"
        assert Decimal(reversal["amount"]) == Decimal("-500")

    def test_unapply_needs_a_target(self, client, staff):
        response = client.post("/api/billing/allocations/unapply", json={}, headers=staff)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_void_payment(self, client, staff, plot):
        payment_id = post_payment(client, staff, plot.id).json()["payment"]["id"]

        missing_reason = client.post(f"/api/billing/payments/{payment_id}/void", json={}, headers=staff)
        voided = client.post(
            f"/api/billing/payments/{payment_id}/void", json={"reason": "Duplicate entry"}, headers=staff
        )

        assert missing_reason.status_code == 422
        assert voided.status_code == 200
        assert voided.json()["payment"]["is_voided"] is True
        assert voided.json()["payment"]["void_reason"] == "Duplicate entry"

    def test_void_unknown_payment(self, client, staff):
        response = client.post("/api/billing/payments/999/void", json={"reason": "x"}, headers=staff)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestPeriods:
    """Test period close endpoints and the closed-period guard."""

    def test_close_twice(self, client, staff):
        first = client.post("/api/billing/periods/2025-01/close", headers=staff)
        second = client.post("/api/billing/periods/2025-01/close", headers=staff)

        assert first.status_code == 200
        assert first.json()["status"] == "closed"
        assert first.json()["closed_by"] == "acc-1"
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "already_closed"

    def test_payment_into_closed_month(self, client, staff, plot):
        client.post("/api/billing/periods/2025-01/close", headers=staff)

        rejected = post_payment(client, staff, plot.id, paid_at="2025-01-15")
        accepted = post_payment(client, staff, plot.id, paid_at="2025-01-15", reason="Late bank statement")

        assert rejected.status_code == 409
        assert rejected.json()["error"]["code"] == "period_closed_requires_reason"
        assert accepted.status_code == 201
        assert accepted.json()["warnings"] == [
            "Period 2025-01 is closed; change recorded as post-close correction"
        ]

        changes = client.get("/api/billing/periods/2025-01/changes").json()
        assert [(c["entity_type"], c["action"], c["reason"]) for c in changes] == [
            ("payment", "create", "Late bank statement")
        ]

    def test_period_status(self, client, staff, plot, jan_feb_charges):
        client.post("/api/billing/periods/2025-01/close", headers=staff)

        status = client.get("/api/billing/periods/2025-01").json()

        assert status["status"] == "closed"
        assert status["snapshot"]["accrued_total"] == "3000.00"
        assert status["drift"]["debt_total"] == "0.00"
        assert client.get("/api/billing/periods/2025-02").json()["status"] == "open"
        assert [p["period"] for p in client.get("/api/billing/periods").json()] == ["2025-01"]

    def test_invalid_period(self, client, staff):
        response = client.post("/api/billing/periods/2025-13/close", headers=staff)

        assert response.status_code == 400


class TestImports:
    """Test import endpoints."""

    def test_statement_import_and_rollback(self, client, staff, plot):
        rows = [
            {
                "date": "05.02.2025",
                "amount": "3000",
                "payer": "Иванов",
                "purpose": "Взнос уч. 12",
                "bank_ref": "B-7",
            },
            {"date": "06.02.2025", "amount": "-100", "purpose": "Комиссия"},
        ]

        response = client.post(
            "/api/billing/imports/statement", json={"rows": rows, "file_name": "feb.csv"}, headers=staff
        )

        assert response.status_code == 201
        body = response.json()
        assert body["totals"]["imported"] == 1
        assert body["totals"]["matched"] == 1
        assert body["totals"]["skipped_out"] == 1

        rollback = client.post(f"/api/billing/imports/{body['batch_id']}/rollback", headers=staff)

        assert rollback.status_code == 200
        assert rollback.json()["voided"] == 1
        again = client.post(f"/api/billing/imports/{body['batch_id']}/rollback", headers=staff)
        assert again.status_code == 409


class TestPenalties:
    """Test penalty endpoints."""

    def test_apply_list_freeze(self, client, staff, plot, jan_feb_charges):
        preview = client.post(
            "/api/billing/penalty/preview",
            json={"as_of": "2025-02-10", "rate": "0.365", "min_penalty": "0.01"},
        )
        assert [Decimal(row["penalty"]) for row in preview.json()] == [Decimal("30.00")]

        applied = client.post(
            "/api/billing/penalty/apply", json={"as_of": "2025-02-10", "rate": "0.365"}, headers=staff
        )
        assert applied.status_code == 200
        assert applied.json()["created"] == 1

        (accrual,) = client.get("/api/billing/penalty", params={"status": "active"}).json()
        assert Decimal(accrual["amount"]) == Decimal("30.00")

        no_reason = client.post(f"/api/billing/penalty/{accrual['id']}/freeze", json={}, headers=staff)
        frozen = client.post(
            f"/api/billing/penalty/{accrual['id']}/freeze", json={"reason": "Installment plan"}, headers=staff
        )

        assert no_reason.status_code == 400
        assert frozen.status_code == 200
        assert frozen.json()["accrual"]["status"] == "frozen"
        assert frozen.json()["accrual"]["freeze_reason"] == "Installment plan"


class TestBalances:
    """Test debtor, receipt and balance endpoints."""

    def test_debtors(self, client, plot, jan_feb_charges):
        (debtor,) = client.get("/api/billing/debtors").json()

        assert debtor["plot_id"] == plot.id
        assert Decimal(debtor["total_debt"]) == Decimal("7000")
        assert client.get("/api/billing/debtors", params={"min_debt": "8000"}).json() == []

    def test_receipts(self, client, plot, jan_feb_charges):
        response = client.get("/api/billing/receipts", params={"period": "2025-02"})

        (receipt,) = response.json()
        assert receipt["plot_id"] == plot.id
        assert receipt["debt"] == "4000.00"
        assert receipt["link"].startswith("/api/billing/receipts/pdf?period=2025-02")

    def test_receipts_bad_filter(self, client):
        response = client.get("/api/billing/receipts", params={"period": "2025-02", "filter": "everyone"})

        assert response.status_code == 400

    def test_plot_balance(self, client, plot, jan_feb_charges):
        balance = client.get(f"/api/billing/plots/{plot.id}/balance").json()

        assert balance["plot_id"] == plot.id
        assert Decimal(balance["accrued"]) == Decimal("7000")
        assert Decimal(balance["total_debt"]) == Decimal("7000")

    def test_unknown_plot_balance(self, client):
        assert client.get("/api/billing/plots/404/balance").status_code == 404
