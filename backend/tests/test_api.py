"""
Test degli endpoint HTTP.

Il database e l'utente corrente sono sostituiti tramite
dependency_overrides (vedi conftest.api_client).
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from jose import jwt
from sqlalchemy import select

from careledger.core.config import settings
from careledger.core.security import create_refresh_token, decode_token
from careledger.models import Booking, InvoiceLineItem, UserRole
from careledger.schemas.token import TokenType

from conftest import make_change_request, make_user


def _expense_payload(organization, amount="25.50"):
    return {
        "organization_id": str(organization.id),
        "entries": [{"category": "travel", "description": "Bus fare", "amount": amount}],
    }


# ============================================================
# System
# ============================================================


class TestHealth:

    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# ============================================================
# Auth
# ============================================================


class TestAuth:

    async def test_first_user_becomes_super_admin(self, api_client):
        response = await api_client.post(
            "/api/v1/auth/register",
            json={
                "email": "owner@example.com",
                "password": "password123",
                "full_name": "Owner",
                "role": "carer",
            },
        )

        assert response.status_code == 201
        assert response.json()["role"] == "super_admin"

    async def test_anonymous_registration_refused(self, api_client, admin_user):
        response = await api_client.post(
            "/api/v1/auth/register",
            json={"email": "new@example.com", "password": "password123", "full_name": "New"},
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    async def test_login_and_refresh(self, api_client, db_session):
        await make_user(db_session, UserRole.BRANCH_ADMIN, email="admin@example.com")

        login = await api_client.post(
            "/api/v1/auth/login",
            json={"email": "admin@example.com", "password": "password123"},
        )
        assert login.status_code == 200
        tokens = login.json()
        assert tokens["token_type"] == "bearer"
        assert tokens["role"] == "branch_admin"
        assert tokens["expires_in"] == settings.access_token_expire_minutes * 60

        refreshed = await api_client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert refreshed.status_code == 200

        wrong_type = await api_client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )
        assert wrong_type.status_code == 401

    async def test_wrong_password(self, api_client, db_session):
        await make_user(db_session, UserRole.BRANCH_ADMIN, email="admin@example.com")

        response = await api_client.post(
            "/api/v1/auth/login",
            json={"email": "admin@example.com", "password": "wrong-password"},
        )
        assert response.status_code == 401


# ============================================================
# Invoices
# ============================================================


class TestInvoiceEndpoints:

    async def test_requires_authentication(self, api_client, invoice):
        response = await api_client.get(f"/api/v1/invoices/{invoice.id}")
        assert response.status_code == 401

    async def test_requires_admin_role(self, api_client, invoice, carer_user, current_user_holder):
        current_user_holder["user"] = carer_user

        response = await api_client.get(f"/api/v1/invoices/{invoice.id}")
        assert response.status_code == 403

    async def test_attach_and_detach_expense(
        self, api_client, organization, invoice, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user

        attached = await api_client.post(
            f"/api/v1/invoices/{invoice.id}/expenses", json=_expense_payload(organization)
        )
        assert attached.status_code == 201
        body = attached.json()
        assert body["total"] == "125.50"
        entry_id = body["entries"][0]["id"]

        totals = await api_client.get(f"/api/v1/invoices/{invoice.id}/expenses/totals")
        assert totals.json()["total_amount"] == "25.50"

        detached = await api_client.delete(f"/api/v1/invoices/{invoice.id}/expenses/{entry_id}")
        assert detached.status_code == 200
        assert detached.json()["total"] == "100.00"

    async def test_locked_ledger_returns_conflict(
        self, api_client, organization, invoice, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user

        locked = await api_client.put(f"/api/v1/invoices/{invoice.id}/lock", json={"is_locked": True})
        assert locked.status_code == 200
        assert locked.json()["is_locked"] is True

        response = await api_client.post(
            f"/api/v1/invoices/{invoice.id}/expenses", json=_expense_payload(organization)
        )
        assert response.status_code == 409
        assert response.json()["error_code"] == "LEDGER_LOCKED"

    async def test_unknown_invoice(self, api_client, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.get(f"/api/v1/invoices/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"

    async def test_negative_amount_rejected(
        self, api_client, organization, invoice, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            f"/api/v1/invoices/{invoice.id}/expenses", json=_expense_payload(organization, "-5.00")
        )
        assert response.status_code == 422

    async def test_update_line_item(self, api_client, db_session, invoice, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user
        line_item = InvoiceLineItem(
            invoice_id=invoice.id,
            description="Home visit",
            quantity=Decimal("1"),
            unit_price=Decimal("35.00"),
            discount_amount=Decimal("0.00"),
            line_total=Decimal("35.00"),
        )
        db_session.add(line_item)
        await db_session.commit()

        response = await api_client.patch(
            f"/api/v1/invoices/line-items/{line_item.id}", json={"quantity": "1.5"}
        )

        assert response.status_code == 200
        assert response.json()["line_total"] == "52.50"

        total = await api_client.post(f"/api/v1/invoices/{invoice.id}/recalculate")
        assert total.json()["total"] == "52.50"


# ============================================================
# Booking requests
# ============================================================


class TestBookingRequestEndpoints:

    async def test_approve_cancellation(
        self, api_client, db_session, booking, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user
        request = await make_change_request(db_session, booking, "cancellation")

        pending = await api_client.get("/api/v1/booking-requests/pending")
        assert [item["id"] for item in pending.json()] == [str(request.id)]

        response = await api_client.post(f"/api/v1/booking-requests/{request.id}/approve", json={})

        assert response.status_code == 200
        assert response.json()["request"]["status"] == "approved"
        assert response.json()["booking"]["status"] == "cancelled"

        again = await api_client.post(f"/api/v1/booking-requests/{request.id}/approve", json={})
        assert again.status_code == 409

        result = await db_session.execute(
            select(Booking.status).where(Booking.id == booking.id)
        )
        assert result.scalar_one() == "cancelled"

    async def test_invalid_time_format(self, api_client, db_session, booking, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user
        request = await make_change_request(db_session, booking, "reschedule")

        response = await api_client.post(
            f"/api/v1/booking-requests/{request.id}/approve",
            json={"new_date": "2025-06-01", "new_time": "25:00"},
        )
        assert response.status_code == 422


# ============================================================
# Notifications
# ============================================================


class TestNotificationEndpoints:

    async def test_client_reads_decision_notification(
        self, api_client, db_session, booking, admin_user, client_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user
        request = await make_change_request(db_session, booking, "cancellation")
        await api_client.post(
            f"/api/v1/booking-requests/{request.id}/reject", json={"admin_notes": "No cover available"}
        )

        current_user_holder["user"] = client_user
        listed = await api_client.get("/api/v1/notifications/")
        assert listed.status_code == 200
        notifications = listed.json()
        assert len(notifications) == 1
        assert notifications[0]["title"] == "Request Rejected"

        read = await api_client.post(f"/api/v1/notifications/{notifications[0]['id']}/read")
        assert read.status_code == 200
        assert read.json()["read_at"] is not None

        unread = await api_client.get("/api/v1/notifications/", params={"unread_only": True})
        assert unread.json() == []

        read_all = await api_client.post("/api/v1/notifications/read-all")
        assert read_all.json() == {"updated": 0}

    async def test_overdue_check_is_admin_only(self, api_client, client_user, current_user_holder):
        current_user_holder["user"] = client_user

        response = await api_client.post("/api/v1/notifications/overdue-check")
        assert response.status_code == 403


# ============================================================
# Extra time and unavailability
# ============================================================


class TestExtraTimeEndpoints:

    async def test_create_and_mark_invoiced(
        self, api_client, branch, staff, invoice, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user

        created = await api_client.post(
            "/api/v1/extra-time/",
            json={
                "branch_id": str(branch.id),
                "staff_id": str(staff.id),
                "work_date": "2025-05-12",
                "scheduled_start_time": "09:00:00",
                "scheduled_end_time": "10:00:00",
                "actual_start_time": "09:00:00",
                "actual_end_time": "10:30:00",
                "hourly_rate": "15.00",
                "extra_time_rate": "24.00",
            },
        )
        assert created.status_code == 201
        record = created.json()
        assert record["total_cost"] == "12.00"

        marked = await api_client.post(
            "/api/v1/extra-time/mark-invoiced",
            json={"invoice_id": str(invoice.id), "record_ids": [record["id"]]},
        )
        assert marked.status_code == 200
        assert marked.json()["total"] == "112.00"

        summary = await api_client.get(f"/api/v1/invoices/{invoice.id}/extra-time/summary")
        assert summary.json()["duration_label"] == "0h 30m"


class TestUnavailabilityEndpoints:

    async def test_carer_reports_and_admin_reviews(
        self, api_client, booking, carer_user, admin_user, current_user_holder
    ):
        current_user_holder["user"] = carer_user
        submitted = await api_client.post(
            "/api/v1/unavailability/", json={"booking_id": str(booking.id), "reason": "Sick"}
        )
        assert submitted.status_code == 201

        current_user_holder["user"] = admin_user
        reviewed = await api_client.post(
            f"/api/v1/unavailability/{submitted.json()['id']}/review",
            json={"decision": "approved"},
        )
        assert reviewed.status_code == 200
        assert reviewed.json()["requires_reassignment"] is True

    async def test_admin_cannot_report(self, api_client, booking, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            "/api/v1/unavailability/", json={"booking_id": str(booking.id), "reason": "Sick"}
        )
        assert response.status_code == 403


# ============================================================
# Token payload
# ============================================================


def _encode(claims):
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


class TestTokenPayload:

    def test_decoded_claims_are_typed(self):
        user_id = uuid.uuid4()

        payload = decode_token(create_refresh_token(str(user_id), UserRole.CARER.value))

        assert payload.sub == user_id
        assert payload.role == UserRole.CARER
        assert payload.type == TokenType.REFRESH
        assert payload.is_admin is False

    @pytest.mark.parametrize(
        "claims",
        [
            {"sub": "not-a-uuid", "role": "carer", "type": "access"},
            {"sub": str(uuid.uuid4()), "role": "mechanic", "type": "access"},
            {"sub": str(uuid.uuid4()), "role": "carer", "type": "session"},
        ],
    )
    def test_unknown_claims_rejected(self, claims):
        claims["exp"] = datetime.now(timezone.utc) + timedelta(minutes=5)

        with pytest.raises(HTTPException) as exc_info:
            decode_token(_encode(claims))
        assert exc_info.value.status_code == 401


# ============================================================
# Notification events and payroll
# ============================================================


class TestNotificationEventEndpoints:

    async def test_agreement_signed(self, api_client, branch, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            "/api/v1/notifications/events/agreement-signed",
            json={
                "branch_id": str(branch.id),
                "agreement_id": str(uuid.uuid4()),
                "agreement_title": "Service Agreement",
                "signer_name": "Mary Client",
            },
        )
        assert response.status_code == 201
        assert response.json() == {"notifications_sent": 1}

        listed = await api_client.get("/api/v1/notifications/")
        assert listed.json()[0]["message"] == "Mary Client has signed the agreement 'Service Agreement'."

    async def test_form_assigned_to_branch_staff(
        self, api_client, branch, staff, client, admin_user, current_user_holder
    ):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            "/api/v1/notifications/events/form-assigned",
            json={
                "branch_id": str(branch.id),
                "form_id": str(uuid.uuid4()),
                "form_title": "Medication Review",
                "client_ids": [str(client.id)],
                "all_branch_staff": True,
            },
        )
        assert response.status_code == 201
        assert response.json() == {"notifications_sent": 2}

    async def test_form_without_audience_rejected(self, api_client, branch, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            "/api/v1/notifications/events/form-assigned",
            json={"branch_id": str(branch.id), "form_id": str(uuid.uuid4()), "form_title": "Empty"},
        )
        assert response.status_code == 422

    async def test_events_are_admin_only(self, api_client, branch, carer_user, current_user_holder):
        current_user_holder["user"] = carer_user

        response = await api_client.post(
            "/api/v1/notifications/events/agreement-signed",
            json={
                "branch_id": str(branch.id),
                "agreement_id": str(uuid.uuid4()),
                "agreement_title": "Service Agreement",
                "signer_name": "Mary Client",
            },
        )
        assert response.status_code == 403


class TestPayrollEndpoints:

    async def test_net_pay_applies_active_deductions(self, api_client, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.post(
            "/api/v1/payroll/net-pay",
            json={
                "gross_pay": "1500.00",
                "deductions": {
                    "tax_amount": "200.00",
                    "ni_amount": "100.00",
                    "student_loan_amount": "50.00",
                },
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["student_loan_deduction"] == "0.00"
        assert body["total_deductions"] == "300.00"
        assert body["net_pay"] == "1200.00"

    async def test_negative_gross_rejected(self, api_client, admin_user, current_user_holder):
        current_user_holder["user"] = admin_user

        response = await api_client.post("/api/v1/payroll/net-pay", json={"gross_pay": "-1.00"})
        assert response.status_code == 422
