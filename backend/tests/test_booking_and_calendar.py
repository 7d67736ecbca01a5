from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from thrive import models, repositories
from thrive.config import settings
from thrive.main import app
from thrive.services import mailer
from thrive.utils.dates import month_range, utcnow, week_range

client = TestClient(app)


def _points(db, user):
    db.expire_all()
    return repositories.ProfileRepository(db).get_by_user(user.id).points


def test_booking_deducts_and_cancel_refunds_points(db, make_user, make_session):
    live = make_session(points_required=30, max_participants=3)
    user, headers = make_user(points=100)
    r = client.post('/api/bookings', json={'session_id': live.id}, headers=headers)
    assert r.status_code == 201
    booking = r.json()
    assert booking['status'] == 'CONFIRMED'
    assert booking['session']['current_participants'] == 1
    assert booking['session']['spots_available'] == 2
    assert _points(db, user) == 70

    again = client.post('/api/bookings', json={'session_id': live.id}, headers=headers)
    assert again.status_code == 400

    c = client.delete(f"/api/bookings/{booking['id']}", headers=headers)
    assert c.status_code == 200
    assert c.json()['status'] == 'CANCELLED'
    assert _points(db, user) == 100
    db.expire_all()
    assert repositories.SessionRepository(db).get(live.id).current_participants == 0
    assert client.delete(f"/api/bookings/{booking['id']}", headers=headers).status_code == 400


def test_booking_survives_smtp_outage(db, make_user, make_session, monkeypatch):
    def broken_smtp(*args, **kwargs):
        raise OSError('connection refused')

    monkeypatch.setattr(settings, 'SMTP_HOST', 'smtp.example.com')
    monkeypatch.setattr(mailer.smtplib, 'SMTP', broken_smtp)
    live = make_session(points_required=30, meeting_url='https://meet.example.com/x')
    user, headers = make_user(points=100)
    r = client.post('/api/bookings', json={'session_id': live.id}, headers=headers)
    assert r.status_code == 201
    assert r.json()['status'] == 'CONFIRMED'
    assert _points(db, user) == 70


def test_cannot_cancel_someone_elses_booking(make_user, make_session):
    live = make_session()
    _, owner = make_user(email='owner@example.com')
    _, other = make_user(email='other@example.com')
    booking = client.post('/api/bookings', json={'session_id': live.id}, headers=owner).json()
    assert client.delete(f"/api/bookings/{booking['id']}", headers=other).status_code == 403
    assert client.delete('/api/bookings/missing', headers=other).status_code == 404


def test_booking_limits(make_user, make_session):
    full = make_session(max_participants=1)
    _, first = make_user(email='first@example.com')
    _, headers = make_user(email='second@example.com', points=5)
    assert client.post('/api/bookings', json={'session_id': full.id}, headers=first).status_code == 201
    assert client.post('/api/bookings', json={'session_id': full.id}, headers=headers).status_code == 400

    pricey = make_session(points_required=50)
    r = client.post('/api/bookings', json={'session_id': pricey.id}, headers=headers)
    assert r.status_code == 400
    assert 'insufficient points' in r.json()['detail']

    past = make_session(scheduled_at=utcnow() - timedelta(hours=1))
    assert client.post('/api/bookings', json={'session_id': past.id}, headers=headers).status_code == 400
    inactive = make_session(is_active=False)
    assert client.post('/api/bookings', json={'session_id': inactive.id}, headers=headers).status_code == 400

    for _ in range(2):
        s = make_session()
        assert client.post('/api/bookings', json={'session_id': s.id}, headers=headers).status_code == 201
    third = make_session()
    r2 = client.post('/api/bookings', json={'session_id': third.id}, headers=headers)
    assert r2.status_code == 400
    assert 'maximum of 2' in r2.json()['detail']


def test_eligibility_lists_every_reason(make_user, make_session):
    live = make_session(points_required=40, max_participants=1, current_participants=1)
    _, headers = make_user(points=10)
    r = client.get(f'/api/calendar/sessions/{live.id}/eligibility', headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body['can_book'] is False
    assert 'session is full' in body['reasons']
    assert any('insufficient points' in reason for reason in body['reasons'])
    assert body['user'] == {'points': 10, 'active_bookings': 0}

    ok = make_session()
    assert client.get(f'/api/calendar/sessions/{ok.id}/eligibility', headers=headers).json()['can_book'] is True
    assert client.get('/api/calendar/sessions/missing/eligibility', headers=headers).status_code == 404


def test_month_and_day_views_mark_bookings(make_user, make_session):
    when = utcnow() + timedelta(days=2)
    booked = make_session(title='Booked', scheduled_at=when)
    make_session(title='Open', scheduled_at=when + timedelta(hours=2))
    _, headers = make_user()
    client.post('/api/bookings', json={'session_id': booked.id}, headers=headers)

    r = client.get('/api/calendar/sessions',
                   params={'view': 'month', 'year': when.year, 'month': when.month}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body['user_booking_count'] == 1
    by_title = {s['title']: s for s in body['sessions']}
    assert by_title['Booked']['is_booked'] is True
    assert by_title['Booked']['can_book'] is False
    assert by_title['Open']['can_book'] is True

    day = client.get(f'/api/calendar/sessions/day/{when.date().isoformat()}', headers=headers).json()
    assert 'Booked' in [s['title'] for s in day]

    upcoming = client.get('/api/calendar/bookings/upcoming', headers=headers).json()
    assert [b['session']['title'] for b in upcoming] == ['Booked']
    mine = client.get('/api/bookings/my-bookings', headers=headers).json()
    assert mine[0]['session']['title'] == 'Booked'

    assert client.get('/api/calendar/sessions', params={'view': 'year'}, headers=headers).status_code == 422


def test_attendees_are_staff_only(make_user, make_session, admin):
    live = make_session()
    _, headers = make_user(name='Yuki')
    _, admin_headers = admin
    _, instructor = make_user(email='teacher@example.com', role=models.UserRole.INSTRUCTOR)
    client.post('/api/bookings', json={'session_id': live.id}, headers=headers)
    assert client.get(f'/api/calendar/sessions/{live.id}/attendees', headers=headers).status_code == 403
    attendees = client.get(f'/api/calendar/sessions/{live.id}/attendees', headers=admin_headers).json()
    assert [a['name'] for a in attendees] == ['Yuki']
    assert client.get(f'/api/calendar/sessions/{live.id}/attendees', headers=instructor).status_code == 200


def test_week_range_starts_on_sunday():
    # 1 March 2026 is a Sunday; 1 May 2026 is a Friday
    start, end = week_range(2026, 3, 1)
    assert start == datetime(2026, 3, 1)
    assert end - start == timedelta(days=7)
    start2, _ = week_range(2026, 5, 1)
    assert start2 == datetime(2026, 4, 26)
    assert week_range(2026, 5, 2)[0] == datetime(2026, 5, 3)
    with pytest.raises(ValueError):
        week_range(2026, 5, 7)


def test_month_range_handles_leap_years():
    start, end = month_range(2028, 2)
    assert start == datetime(2028, 2, 1)
    assert end == datetime(2028, 3, 1)
    assert month_range(2026, 12)[1] == datetime(2027, 1, 1)
