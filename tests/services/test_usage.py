import datetime as _dt

from dify_chat.services.usage import FREE_PLAN, PRO_PLAN, PlanLimits, UsageLedger


class Clock:
    def __init__(self, moment: _dt.datetime) -> None:
        self.moment = moment

    def __call__(self) -> _dt.datetime:
        return self.moment


def test_plan_limits():
    assert (FREE_PLAN.monthly_messages, FREE_PLAN.monthly_uploads, FREE_PLAN.max_upload_size_mb) == (50, 10, 5)
    assert (PRO_PLAN.monthly_messages, PRO_PLAN.monthly_uploads, PRO_PLAN.max_upload_size_mb) == (500, 100, 25)


def test_message_limit_blocks_usage():
    ledger = UsageLedger(default_plan=PlanLimits("tiny", 2, 5, 1))
    ledger.record_chat("u1", tokens=10)
    assert ledger.check("u1").can_use is True

    ledger.record_chat("u1")
    status = ledger.check("u1")

    assert status.can_use is False
    assert status.chat_count == 2
    assert "message limit" in status.reason


def test_upload_limit_only_disables_uploads():
    ledger = UsageLedger(default_plan=PlanLimits("tiny", 10, 1, 1))
    ledger.record_uploads("u1", 1)
    ledger.record_uploads("u1", 0)

    status = ledger.check("u1")

    assert status.can_use is True
    assert status.upload_disabled is True
    assert status.upload_count == 1


def test_counters_reset_each_month():
    clock = Clock(_dt.datetime(2024, 1, 31, 23, 0, tzinfo=_dt.timezone.utc))
    ledger = UsageLedger(default_plan=PlanLimits("tiny", 1, 1, 1), clock=clock)
    ledger.record_chat("u1")
    assert ledger.check("u1").can_use is False

    clock.moment = _dt.datetime(2024, 2, 1, 0, 5, tzinfo=_dt.timezone.utc)

    assert ledger.check("u1").can_use is True


def test_set_plan_raises_limits(logger):
    ledger = UsageLedger(logger=logger, default_plan=PlanLimits("tiny", 1, 1, 1))
    ledger.record_chat("u1")

    ledger.set_plan("u1", PRO_PLAN)

    assert ledger.plan_for("u1") is PRO_PLAN
    assert ledger.check("u1").can_use is True
    assert ledger.check("u2").can_use is True
    assert "usage.plan.updated" in logger.names()
