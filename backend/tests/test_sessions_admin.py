from datetime import timedelta

from fastapi.testclient import TestClient

from thrive import repositories
from thrive.main import app
from thrive.utils.dates import iso, utcnow

client = TestClient(app)


def _create(headers, **overrides):
    payload = {
        'title': 'Weekly Kaiwa',
        'scheduled_at': iso(utcnow() + timedelta(days=1)),
        'duration': 45,
        'max_participants': 6,
    }
    payload.update(overrides)
    return client.post('/api/admin/sessions', json=payload, headers=headers)


def test_create_recurring_series_and_details(admin):
    user, headers = admin
    r = _create(headers, is_recurring=True, recurring_weeks=4)
    assert r.status_code == 201
    body = r.json()
    assert body['count'] == 4
    sessions = body['sessions']
    parent = sessions[0]
    assert parent['recurring_parent_id'] is None
    assert parent['host_id'] == user.id
    assert all(s['recurring_parent_id'] == parent['id'] for s in sessions[1:])

    details = client.get(f"/api/admin/sessions/{sessions[2]['id']}/recurring-details", headers=headers).json()
    assert details['is_recurring'] is True
    assert details['parent_id'] == parent['id']
    assert details['total_sessions'] == 4


def test_session_validation(admin):
    _, headers = admin
    assert _create(headers, is_recurring=True).status_code == 422
    assert _create(headers, duration=10).status_code == 422
    assert _create(headers, max_participants=0).status_code == 422
    assert _create(headers, host_id='nobody').status_code == 400


def test_delete_parent_promotes_next_occurrence(db, admin):
    _, headers = admin
    sessions = _create(headers, is_recurring=True, recurring_weeks=3).json()['sessions']
    r = client.delete(f"/api/admin/sessions/{sessions[0]['id']}", headers=headers)
    assert r.json() == {'deleted': 1}
    details = client.get(f"/api/admin/sessions/{sessions[2]['id']}/recurring-details", headers=headers).json()
    assert details['parent_id'] == sessions[1]['id']
    assert details['total_sessions'] == 2

    r2 = client.delete(f"/api/admin/sessions/{sessions[2]['id']}",
                       params={'delete_all_recurring': True}, headers=headers)
    assert r2.json() == {'deleted': 2}
    assert repositories.SessionRepository(db).get(sessions[1]['id']) is None


def test_update_session_checks_capacity(admin, make_user):
    _, headers = admin
    live = _create(headers, max_participants=2).json()['sessions'][0]
    _, learner = make_user()
    client.post('/api/bookings', json={'session_id': live['id']}, headers=learner)
    assert client.put(f"/api/admin/sessions/{live['id']}", json={'max_participants': 0},
                      headers=headers).status_code == 422
    r = client.put(f"/api/admin/sessions/{live['id']}", json={'title': 'Renamed', 'max_participants': 1},
                   headers=headers)
    assert r.status_code == 200
    assert r.json()['title'] == 'Renamed'
    assert r.json()['is_full'] is True


def test_update_session_rejects_null_for_required_fields(admin):
    _, headers = admin
    live = _create(headers, meeting_url='https://meet.example.com/a').json()['sessions'][0]
    url = f"/api/admin/sessions/{live['id']}"
    for field in ('max_participants', 'title', 'scheduled_at', 'is_active'):
        assert client.put(url, json={field: None}, headers=headers).status_code == 422
    # optional fields can still be cleared
    r = client.put(url, json={'meeting_url': None}, headers=headers)
    assert r.status_code == 200
    assert r.json()['meeting_url'] is None
    assert r.json()['title'] == 'Weekly Kaiwa'


def test_learner_listings(admin, make_user, make_session):
    _, admin_headers = admin
    _, headers = make_user()
    for day in range(1, 4):
        make_session(title=f'S{day}', scheduled_at=utcnow() + timedelta(days=day))
    make_session(title='Past', scheduled_at=utcnow() - timedelta(days=1))

    upcoming = client.get('/api/sessions/upcoming', params={'limit': 2}, headers=headers).json()
    assert [s['title'] for s in upcoming] == ['S1', 'S2']

    page = client.get('/api/sessions', params={'page': 2, 'limit': 3}, headers=headers).json()
    assert page['total'] == 4
    assert page['total_pages'] == 2
    assert page['has_prev_page'] is True
    assert page['has_next_page'] is False
    assert len(page['sessions']) == 1

    start = iso(utcnow())
    end = iso(utcnow() + timedelta(days=2, hours=1))
    ranged = client.get('/api/sessions/range', params={'start_date': start, 'end_date': end}, headers=headers)
    assert [s['title'] for s in ranged.json()] == ['S1', 'S2']
    assert client.get('/api/sessions/range', params={'start_date': start}, headers=headers).status_code == 400

    assert client.get('/api/admin/sessions/paginated', headers=headers).status_code == 403
    assert client.get('/api/admin/sessions/paginated', headers=admin_headers).json()['total'] == 4
    assert client.get('/api/sessions/missing', headers=headers).status_code == 404
