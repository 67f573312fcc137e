from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from asktrevor.logging import get_logger
from asktrevor.service.errors import NotFoundError
from asktrevor.storage.models import (
    CLOSED_DEAL_STAGES,
    DEAL_STAGES,
    CRMActivity,
    CRMContact,
    CRMDeal,
)

logger = get_logger(__name__)


@dataclass
class CRMMetrics:
    total_contacts: int
    active_deals: int
    pipeline_value: float
    win_rate: int
    deals_won_this_month: int
    revenue_this_month: float


@dataclass
class StageSummary:
    stage: str
    count: int
    value: float


@dataclass
class MonthlyRevenue:
    month: str
    label: str
    revenue: float


@dataclass
class HoursSummary:
    this_week: float
    last_week: float


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _months_before(moment: datetime, months: int) -> datetime:
    year = moment.year
    month = moment.month - months
    while month <= 0:
        month += 12
        year -= 1
    # Clamp day for shorter months
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment.replace(year=year, month=month, day=28)


def _week_start(moment: datetime) -> datetime:
    start = moment - timedelta(days=moment.weekday())
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


class CRMService:
    """Contacts, deals and activities, plus the dashboard aggregations.

    A user sees records they created or are assigned to.
    """

    def __init__(self, store: Any, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self._clock = clock or datetime.utcnow

    # writes ---------------------------------------------------------------
    def create_contact(self, user_id: str, **fields: Any) -> CRMContact:
        contact = self.store.create_contact(CRMContact(created_by=user_id, **fields))
        logger.info("crm_contact_created", contact_id=contact.id, contact_type=contact.contact_type)
        return contact

    def create_deal(self, user_id: str, *, contact_id: str, **fields: Any) -> CRMDeal:
        contact = self.store.get_contact(contact_id)
        if not contact or not self._visible(contact, user_id):
            raise NotFoundError("contact not found", detail={"contact_id": contact_id})
        stage = fields.get("stage") or "lead"
        if stage in CLOSED_DEAL_STAGES and not fields.get("actual_close_date"):
            fields["actual_close_date"] = self._clock()
        fields["stage"] = stage
        deal = self.store.create_deal(CRMDeal(contact_id=contact_id, created_by=user_id, **fields))
        logger.info("crm_deal_created", deal_id=deal.id, stage=deal.stage)
        return deal

    def update_deal_stage(self, user_id: str, deal_id: str, stage: str) -> CRMDeal:
        """Move a deal; closing it stamps ``actual_close_date``, reopening clears it."""
        deal = self.store.get_deal(deal_id)
        if not deal or not self._visible(deal, user_id):
            raise NotFoundError("deal not found", detail={"deal_id": deal_id})
        close_date = self._clock() if stage in CLOSED_DEAL_STAGES else None
        updated = self.store.update_deal_stage(deal_id, stage, actual_close_date=close_date)
        if not updated:
            raise NotFoundError("deal not found", detail={"deal_id": deal_id})
        logger.info("crm_deal_stage_updated", deal_id=deal_id, from_stage=deal.stage, to_stage=stage)
        return updated

    def create_activity(self, user_id: str, **fields: Any) -> CRMActivity:
        if fields.get("status") == "completed" and not fields.get("completed_at"):
            fields["completed_at"] = self._clock()
        activity = self.store.create_activity(CRMActivity(created_by=user_id, **fields))
        logger.info("crm_activity_created", activity_id=activity.id, activity_type=activity.activity_type)
        return activity

    # reads ----------------------------------------------------------------
    def list_contacts(self, user_id: str) -> List[CRMContact]:
        return self.store.list_contacts(user_id)

    def list_deals(self, user_id: str) -> List[CRMDeal]:
        return self.store.list_deals(user_id)

    def metrics(self, user_id: str) -> CRMMetrics:
        deals = self.store.list_deals(user_id)
        open_deals = [d for d in deals if d.is_open]
        won = [d for d in deals if d.stage == "won"]
        lost = [d for d in deals if d.stage == "lost"]
        closed = len(won) + len(lost)
        win_rate = round(len(won) / closed * 100) if closed else 0

        month_start = _month_start(self._clock())
        won_this_month = [
            d for d in won if d.actual_close_date and d.actual_close_date >= month_start
        ]
        return CRMMetrics(
            total_contacts=len(self.store.list_contacts(user_id)),
            active_deals=len(open_deals),
            pipeline_value=sum(d.deal_value or 0 for d in open_deals),
            win_rate=int(win_rate),
            deals_won_this_month=len(won_this_month),
            revenue_this_month=sum(d.deal_value or 0 for d in won_this_month),
        )

    def deals_by_stage(self, user_id: str) -> List[StageSummary]:
        """Count and value per pipeline stage, every stage listed in pipeline order."""
        summary: Dict[str, StageSummary] = {
            stage: StageSummary(stage=stage, count=0, value=0.0) for stage in DEAL_STAGES
        }
        for deal in self.store.list_deals(user_id):
            bucket = summary.get(deal.stage)
            if bucket is None:
                continue
            bucket.count += 1
            bucket.value += deal.deal_value or 0
        return list(summary.values())

    def revenue_by_month(self, user_id: str, *, months: int = 6) -> List[MonthlyRevenue]:
        since = _months_before(self._clock(), months)
        totals: Dict[str, MonthlyRevenue] = {}
        for deal in self.store.list_deals(user_id):
            closed = deal.actual_close_date
            if deal.stage != "won" or not closed or not deal.deal_value or closed < since:
                continue
            key = closed.strftime("%Y-%m")
            entry = totals.get(key)
            if entry is None:
                entry = totals[key] = MonthlyRevenue(month=key, label=closed.strftime("%b %Y"), revenue=0.0)
            entry.revenue += deal.deal_value
        return [totals[key] for key in sorted(totals)]

    def upcoming_activities(self, user_id: str, *, days: int = 3) -> List[CRMActivity]:
        """Pending activities due on or before ``now + days`` (overdue included)."""
        horizon = self._clock() + timedelta(days=days)
        due = [
            a
            for a in self.store.list_activities(user_id)
            if a.status == "pending" and a.due_date and a.due_date <= horizon
        ]
        return sorted(due, key=lambda a: a.due_date)

    def hours_summary(self, user_id: str) -> HoursSummary:
        """Hours logged on completed activities, this week and last (weeks start Monday)."""
        this_week_start = _week_start(self._clock())
        last_week_start = this_week_start - timedelta(days=7)
        minutes = {"this": 0, "last": 0}
        for activity in self.store.list_activities(user_id):
            if activity.status != "completed" or not activity.duration_minutes:
                continue
            when = activity.completed_at or activity.created_at
            if when >= this_week_start:
                minutes["this"] += activity.duration_minutes
            elif when >= last_week_start:
                minutes["last"] += activity.duration_minutes
        return HoursSummary(
            this_week=round(minutes["this"] / 60, 2),
            last_week=round(minutes["last"] / 60, 2),
        )

    def _visible(self, record: Any, user_id: str) -> bool:
        return record.created_by == user_id or getattr(record, "assigned_to", None) == user_id
