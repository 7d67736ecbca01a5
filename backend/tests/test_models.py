from datetime import datetime, timedelta

from sqlalchemy import DateTime
from sqlmodel import SQLModel

from thrive import models, repositories
from thrive.utils.dates import utcnow


def test_datetime_columns_are_plain_naive_datetime():
    columns = [
        c for t in SQLModel.metadata.sorted_tables for c in t.columns
        if c.name.endswith('_at') or c.name.startswith('current_period')
    ]
    assert columns
    for column in columns:
        assert type(column.type) is DateTime, f'{column.table.name}.{column.name}'
        assert column.type.timezone is False


def test_naive_utc_values_round_trip(db, make_session):
    when = datetime(2030, 1, 15, 9, 30)
    live = make_session(scheduled_at=when)
    db.expire_all()
    stored = repositories.SessionRepository(db).get(live.id)
    assert stored.scheduled_at == when
    assert stored.created_at.tzinfo is None


def test_subscription_needs_future_period_end():
    now = utcnow()
    open_ended = models.Subscription(user_id='u1', status=models.SubscriptionStatus.ACTIVE)
    assert open_ended.is_active_at(now) is False

    current = models.Subscription(user_id='u1', status=models.SubscriptionStatus.TRIALING,
                                  current_period_end=now + timedelta(days=1))
    assert current.is_active_at(now) is True
    assert current.is_active_at(now + timedelta(days=2)) is False

    unpaid = models.Subscription(user_id='u1', status=models.SubscriptionStatus.UNPAID,
                                 current_period_end=now + timedelta(days=1))
    assert unpaid.is_active_at(now) is False
