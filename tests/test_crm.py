"""CRM writes, visibility and dashboard aggregations."""

from datetime import datetime, timedelta

import pytest

from asktrevor.service.crm import CRMService
from asktrevor.service.errors import NotFoundError
from asktrevor.storage.errors import ConstraintViolation
from asktrevor.storage.memory import MemoryStore

# Friday; the week starts Monday 10 June
NOW = datetime(2024, 6, 14, 12, 0, 0)


@pytest.fixture
def crm():
    return CRMService(MemoryStore(), clock=lambda: NOW)


def _contact(crm, user_id="u1", **fields):
    fields.setdefault("full_name", "Jane Client")
    fields.setdefault("email", "jane@example.com")
    return crm.create_contact(user_id, **fields)


def _deal(crm, contact, user_id="u1", **fields):
    fields.setdefault("deal_name", "Kitchen reno")
    return crm.create_deal(user_id, contact_id=contact.id, **fields)


class TestContactsAndDeals:
    def test_contacts_visible_to_creator_and_assignee(self, crm):
        _contact(crm, "u1")
        _contact(crm, "u1", assigned_to="u2", full_name="Assigned")
        _contact(crm, "u3")
        assert len(crm.list_contacts("u1")) == 2
        assert [c.full_name for c in crm.list_contacts("u2")] == ["Assigned"]

    def test_deal_requires_visible_contact(self, crm):
        contact = _contact(crm, "u1")
        with pytest.raises(NotFoundError):
            crm.create_deal("u2", contact_id=contact.id, deal_name="Not mine")
        with pytest.raises(NotFoundError):
            crm.create_deal("u1", contact_id="missing", deal_name="Ghost")

    def test_deal_defaults_to_lead(self, crm):
        deal = _deal(crm, _contact(crm))
        assert deal.stage == "lead"
        assert deal.actual_close_date is None

    def test_closing_stage_stamps_close_date(self, crm):
        deal = _deal(crm, _contact(crm))
        won = crm.update_deal_stage("u1", deal.id, "won")
        assert won.actual_close_date == NOW

        reopened = crm.update_deal_stage("u1", deal.id, "negotiation")
        assert reopened.actual_close_date is None

    def test_stage_update_hidden_from_other_users(self, crm):
        deal = _deal(crm, _contact(crm))
        with pytest.raises(NotFoundError):
            crm.update_deal_stage("u2", deal.id, "won")

    def test_store_rejects_unknown_stage(self, crm):
        deal = _deal(crm, _contact(crm))
        with pytest.raises(ConstraintViolation):
            crm.store.update_deal_stage(deal.id, "maybe")

    def test_completed_activity_stamps_completion(self, crm):
        activity = crm.create_activity("u1", activity_type="call", subject="Site visit", status="completed")
        assert activity.completed_at == NOW


class TestAggregations:
    def test_metrics(self, crm):
        contact = _contact(crm)
        _deal(crm, contact, deal_value=10_000, stage="proposal")
        _deal(crm, contact, deal_value=5_000, stage="negotiation")
        _deal(crm, contact, deal_value=20_000, stage="won")
        old_win = _deal(crm, contact, deal_value=7_000, stage="won")
        crm.store.deals[old_win.id].actual_close_date = datetime(2024, 4, 2)
        _deal(crm, contact, deal_value=3_000, stage="lost")

        metrics = crm.metrics("u1")

        assert metrics.total_contacts == 1
        assert metrics.active_deals == 2
        assert metrics.pipeline_value == 15_000
        assert metrics.win_rate == 67
        assert metrics.deals_won_this_month == 1
        assert metrics.revenue_this_month == 20_000

    def test_metrics_with_no_closed_deals(self, crm):
        metrics = crm.metrics("u1")
        assert metrics.win_rate == 0
        assert metrics.pipeline_value == 0

    def test_deals_by_stage_lists_every_stage(self, crm):
        contact = _contact(crm)
        _deal(crm, contact, deal_value=1_000)
        _deal(crm, contact, deal_value=2_500)
        _deal(crm, contact, stage="won", deal_value=4_000)

        summary = crm.deals_by_stage("u1")

        assert [s.stage for s in summary] == ["lead", "qualified", "proposal", "negotiation", "won", "lost"]
        assert (summary[0].count, summary[0].value) == (2, 3_500)
        assert (summary[4].count, summary[4].value) == (1, 4_000)
        assert summary[1].count == 0

    def test_revenue_by_month(self, crm):
        contact = _contact(crm)
        for close_date, value in (
            (datetime(2024, 6, 3), 1_000),
            (datetime(2024, 6, 10), 500),
            (datetime(2024, 3, 20), 2_000),
            (datetime(2023, 11, 1), 9_000),
        ):
            _deal(crm, contact, stage="won", deal_value=value, actual_close_date=close_date)

        revenue = crm.revenue_by_month("u1", months=6)

        assert [(r.month, r.label, r.revenue) for r in revenue] == [
            ("2024-03", "Mar 2024", 2_000),
            ("2024-06", "Jun 2024", 1_500),
        ]

    def test_upcoming_includes_overdue_and_sorts_by_due(self, crm):
        crm.create_activity("u1", activity_type="task", subject="later", due_date=NOW + timedelta(days=2))
        crm.create_activity("u1", activity_type="task", subject="overdue", due_date=NOW - timedelta(days=1))
        crm.create_activity("u1", activity_type="task", subject="too far", due_date=NOW + timedelta(days=5))
        crm.create_activity("u1", activity_type="task", subject="no date")
        crm.create_activity(
            "u1", activity_type="task", subject="done", status="completed", due_date=NOW
        )

        upcoming = crm.upcoming_activities("u1", days=3)

        assert [a.subject for a in upcoming] == ["overdue", "later"]

    def test_hours_summary_splits_weeks(self, crm):
        for completed_at, minutes in (
            (datetime(2024, 6, 10, 9), 90),
            (datetime(2024, 6, 13, 15), 30),
            (datetime(2024, 6, 5, 10), 60),
            (datetime(2024, 5, 20, 10), 600),
        ):
            crm.create_activity(
                "u1",
                activity_type="meeting",
                subject="logged",
                status="completed",
                completed_at=completed_at,
                duration_minutes=minutes,
            )
        crm.create_activity("u1", activity_type="call", subject="pending", duration_minutes=45)

        hours = crm.hours_summary("u1")

        assert hours.this_week == 2.0
        assert hours.last_week == 1.0


class TestCRMEndpoints:
    def test_contact_deal_and_stage_flow(self, client, auth_headers, other_auth_headers):
        resp = client.post(
            "/crm/contacts",
            json={"full_name": "Jane Client", "email": "jane@example.com", "contact_type": "client"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        contact_id = resp.json()["id"]

        resp = client.post(
            "/crm/deals",
            json={"contact_id": contact_id, "deal_name": "Extension", "deal_value": 80000},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        deal_id = resp.json()["id"]

        resp = client.patch(f"/crm/deals/{deal_id}/stage", json={"stage": "won"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["actual_close_date"] is not None

        resp = client.get("/crm/metrics", headers=auth_headers)
        assert resp.json()["totalContacts"] == 1
        assert resp.json()["winRate"] == 100

        assert client.get("/crm/contacts", headers=other_auth_headers).json() == []
        resp = client.patch(f"/crm/deals/{deal_id}/stage", json={"stage": "lost"}, headers=other_auth_headers)
        assert resp.status_code == 404

    def test_invalid_stage_is_400(self, client, auth_headers):
        resp = client.patch("/crm/deals/anything/stage", json={"stage": "maybe"}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("stage must be one of:")

    def test_hours_uses_camel_case(self, client, auth_headers):
        resp = client.get("/crm/hours", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"thisWeek": 0.0, "lastWeek": 0.0}
        assert resp.headers["Cache-Control"] == "no-store"
