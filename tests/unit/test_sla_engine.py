"""
Unit tests for the SLA engine arithmetic: policy selection, thresholds,
business minutes and the escalation rule.
"""
from datetime import datetime, time, timedelta, timezone
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from backend.app.schemas.sla import SlaState
from backend.app.services.sla_engine import (
    business_minutes_between,
    evaluate_target,
    policy_score,
    select_policy,
    should_escalate,
    wall_clock_minutes,
)

UTC = ZoneInfo("UTC")
NINE_TO_FIVE = {day: (time(9, 0), time(17, 0)) for day in range(5)}


def _policy(name, channel=None, priority=None, precedence=0, **extra):
    fields = dict(
        name=name,
        channel=channel,
        priority=priority,
        precedence=precedence,
        first_response_target_minutes=10,
        resolution_target_minutes=60,
        escalation_enabled=False,
        escalation_after_minutes=None,
        escalate_to_user_id=None,
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


def test_most_specific_policy_wins():
    a = _policy("A", channel="email")
    b = _policy("B", priority=3)
    c = _policy("C", channel="email", priority=3)
    d = _policy("D")

    chosen = select_policy([a, b, c, d], channel="email", priority=3)
    assert chosen is c
    assert policy_score(c, "email", 3) == 3
    assert policy_score(a, "email", 3) == 2
    assert policy_score(b, "email", 3) == 1
    assert policy_score(d, "email", 3) == 0


def test_mismatched_filter_excludes_policy():
    a = _policy("A", channel="email")
    d = _policy("D")
    assert policy_score(a, "sos", 1) is None
    assert select_policy([a, d], channel="sos", priority=1) is d


def test_no_matching_policy_returns_none():
    assert select_policy([_policy("A", channel="email")], channel="chat", priority=None) is None
    assert select_policy([], channel="email", priority=1) is None


def test_equal_scores_prefer_precedence_then_fetch_order():
    first = _policy("first", channel="sos")
    second = _policy("second", channel="sos")
    assert select_policy([first, second], "sos", 2) is first

    preferred = _policy("preferred", channel="sos", precedence=5)
    assert select_policy([first, preferred, second], "sos", 2) is preferred


def test_priority_zero_is_a_real_filter():
    zero = _policy("zero", priority=0)
    assert policy_score(zero, None, 0) == 1
    assert policy_score(zero, None, 1) is None


def test_ten_minute_target_thresholds():
    assert evaluate_target(10, 0).status == SlaState.OK
    assert evaluate_target(10, 6).status == SlaState.OK
    warning = evaluate_target(10, 7)
    assert warning.status == SlaState.WARNING
    assert warning.remaining_minutes == 3
    assert evaluate_target(10, 9).status == SlaState.WARNING
    assert evaluate_target(10, 10).status == SlaState.BREACHED
    breached = evaluate_target(10, 11)
    assert breached.status == SlaState.BREACHED
    assert breached.remaining_minutes == 0


def test_warning_band_rounds_up():
    # ceil(0.25 * 30) == 8
    assert evaluate_target(30, 21).status == SlaState.OK
    assert evaluate_target(30, 22).status == SlaState.WARNING


def test_wall_clock_minutes_floors_and_clamps():
    start = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    assert wall_clock_minutes(start, start + timedelta(minutes=11, seconds=59)) == 11
    assert wall_clock_minutes(start, start - timedelta(minutes=5)) == 0


def test_business_minutes_inside_one_day():
    # Monday
    start = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    end = datetime(2026, 3, 2, 11, 30, tzinfo=timezone.utc)
    assert business_minutes_between(start, end, NINE_TO_FIVE, UTC) == 90


def test_business_minutes_skip_nights_and_weekends():
    # Friday 16:00 to Monday 10:00 = 60 (Fri) + 60 (Mon)
    start = datetime(2026, 3, 6, 16, 0, tzinfo=timezone.utc)
    end = datetime(2026, 3, 9, 10, 0, tzinfo=timezone.utc)
    assert business_minutes_between(start, end, NINE_TO_FIVE, UTC) == 120


def test_business_minutes_outside_hours_is_zero():
    # Saturday
    start = datetime(2026, 3, 7, 9, 0, tzinfo=timezone.utc)
    end = datetime(2026, 3, 7, 18, 0, tzinfo=timezone.utc)
    assert business_minutes_between(start, end, NINE_TO_FIVE, UTC) == 0
    assert business_minutes_between(start, end, {}, UTC) == 0


def test_business_minutes_use_local_time_zone():
    berlin = ZoneInfo("Europe/Berlin")
    # 08:00-09:00 UTC is 09:00-10:00 in Berlin (CET) on a Monday
    start = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    end = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert business_minutes_between(start, end, NINE_TO_FIVE, berlin) == 60
    assert business_minutes_between(start, end, NINE_TO_FIVE, UTC) == 0


def test_escalation_rule():
    policy = _policy(
        "sos", escalation_enabled=True, escalation_after_minutes=5, escalate_to_user_id="supervisor",
    )
    waiting = SimpleNamespace(first_response_at=None, status="open")
    assert not should_escalate(policy, waiting, 4)
    assert should_escalate(policy, waiting, 5)

    answered = SimpleNamespace(first_response_at=datetime.now(timezone.utc), status="assigned")
    assert not should_escalate(policy, answered, 30)

    already = SimpleNamespace(first_response_at=None, status="escalated")
    assert not should_escalate(policy, already, 30)


def test_escalation_threshold_is_the_earlier_of_target_and_delay():
    policy = _policy(
        "slow", first_response_target_minutes=3,
        escalation_enabled=True, escalation_after_minutes=20, escalate_to_user_id="supervisor",
    )
    waiting = SimpleNamespace(first_response_at=None, status="open")
    assert should_escalate(policy, waiting, 3)


def test_escalation_disabled_or_incomplete():
    waiting = SimpleNamespace(first_response_at=None, status="open")
    assert not should_escalate(_policy("off"), waiting, 100)
    incomplete = _policy("no-target", escalation_enabled=True, escalation_after_minutes=1)
    assert not should_escalate(incomplete, waiting, 100)
