"""Monthly usage limits per subscription plan."""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple

from dify_chat.models.chat import UsageStatus

from .logging import StructuredLogger


@dataclass(frozen=True, slots=True)
class PlanLimits:
    name: str
    monthly_messages: int
    monthly_uploads: int
    max_upload_size_mb: int


FREE_PLAN = PlanLimits(name="free", monthly_messages=50, monthly_uploads=10, max_upload_size_mb=5)
PRO_PLAN = PlanLimits(name="pro", monthly_messages=500, monthly_uploads=100, max_upload_size_mb=25)


def month_start(moment: _dt.datetime) -> _dt.date:
    return moment.date().replace(day=1)


@dataclass(slots=True)
class _Counters:
    chats: int = 0
    uploads: int = 0
    tokens: int = 0


@dataclass
class UsageLedger:
    """In-process usage counters keyed by user and calendar month.

    Billing callbacks call :meth:`set_plan` when a subscription starts or ends;
    everything else about billing stays with the payment provider.
    """

    logger: StructuredLogger | None = None
    default_plan: PlanLimits = FREE_PLAN
    clock: Callable[[], _dt.datetime] = field(default=lambda: _dt.datetime.now(_dt.timezone.utc))
    _plans: Dict[str, PlanLimits] = field(default_factory=dict, init=False)
    _counters: Dict[Tuple[str, _dt.date], _Counters] = field(default_factory=dict, init=False)

    def set_plan(self, user_id: str, plan: PlanLimits) -> None:
        self._plans[user_id] = plan
        if self.logger:
            self.logger.info("usage.plan.updated", user_id=user_id, plan=plan.name)

    def plan_for(self, user_id: str) -> PlanLimits:
        return self._plans.get(user_id, self.default_plan)

    def check(self, user_id: str) -> UsageStatus:
        limits = self.plan_for(user_id)
        counters = self._current(user_id)
        if counters.chats >= limits.monthly_messages:
            return UsageStatus(
                can_use=False,
                reason=f"Monthly message limit ({limits.monthly_messages}) reached. Upgrade your plan to continue.",
                chat_count=counters.chats,
                upload_count=counters.uploads,
            )
        if counters.uploads >= limits.monthly_uploads:
            return UsageStatus(
                can_use=True,
                upload_disabled=True,
                reason=f"Monthly file upload limit ({limits.monthly_uploads}) reached.",
                chat_count=counters.chats,
                upload_count=counters.uploads,
            )
        return UsageStatus(can_use=True, chat_count=counters.chats, upload_count=counters.uploads)

    def record_chat(self, user_id: str, tokens: int = 0) -> None:
        counters = self._current(user_id)
        counters.chats += 1
        counters.tokens += max(0, tokens)

    def record_uploads(self, user_id: str, count: int) -> None:
        if count <= 0:
            return
        self._current(user_id).uploads += count

    def _current(self, user_id: str) -> _Counters:
        key = (user_id, month_start(self.clock()))
        return self._counters.setdefault(key, _Counters())
