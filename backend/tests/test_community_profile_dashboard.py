from datetime import timedelta

from fastapi.testclient import TestClient

from thrive import models, repositories
from thrive.config import settings
from thrive.main import app
from thrive.services.dashboard import unlocked_achievements
from thrive.utils.dates import utcnow

client = TestClient(app)

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def test_posts_pagination_and_likes(make_user):
    _, headers = make_user()
    _, other = make_user(email='friend@example.com', name='Friend')
    for i in range(3):
        r = client.post('/api/community/posts', json={'content': f'post {i}'}, headers=headers)
        assert r.status_code == 201
    assert client.post('/api/community/posts', json={'content': '   '}, headers=headers).status_code == 422

    page = client.get('/api/community/posts', params={'page': 1, 'limit': 2}, headers=other).json()
    assert page['total'] == 3
    assert page['total_pages'] == 2
    assert [p['content'] for p in page['posts']] == ['post 2', 'post 1']
    assert page['posts'][0]['author']['name'] == 'Learner'

    post_id = page['posts'][0]['id']
    first = client.post(f'/api/community/posts/{post_id}/like', headers=other).json()
    second = client.post(f'/api/community/posts/{post_id}/like', headers=other).json()
    assert first['likes_count'] == 1
    assert second['likes_count'] == 1
    assert second['already_liked'] is True
    assert client.post('/api/community/posts/missing/like', headers=other).status_code == 404


def test_only_admins_announce(admin, make_user):
    _, headers = make_user()
    _, admin_headers = admin
    r = client.post('/api/community/posts', json={'content': 'News', 'is_announcement': True}, headers=headers)
    assert r.status_code == 403
    r2 = client.post('/api/community/posts', json={'content': 'News', 'is_announcement': True},
                     headers=admin_headers)
    assert r2.status_code == 201
    assert r2.json()['is_announcement'] is True


def test_profile_update_and_validation(make_user):
    _, headers = make_user()
    r = client.put('/api/profile/me', json={'name': ' Aiko ', 'bio': 'Learning kanji', 'language_level': 'N4'},
                   headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body['name'] == 'Aiko'
    assert body['language_level'] == 'N4'
    assert client.put('/api/profile/me', json={'name': '  '}, headers=headers).status_code == 422
    assert client.put('/api/profile/me', json={'bio': 'x' * 501}, headers=headers).status_code == 422
    assert client.put('/api/profile/me', json={'language_level': 'N9'}, headers=headers).status_code == 422
    assert client.get('/api/profile/me', headers=headers).json()['bio'] == 'Learning kanji'


def test_photo_upload_and_delete(make_user, monkeypatch):
    _, headers = make_user()
    r = client.post('/api/profile/me/photo', files={'photo': ('me.png', PNG, 'image/png')}, headers=headers)
    assert r.status_code == 200
    url = r.json()['profile_photo']
    assert url.startswith('/uploads/profile-photos/')
    assert client.get(url).content == PNG

    fake = client.post('/api/profile/me/photo', files={'photo': ('me.png', b'not an image', 'image/png')},
                       headers=headers)
    assert fake.status_code == 400
    pdf = client.post('/api/profile/me/photo', files={'photo': ('cv.pdf', PNG, 'application/pdf')},
                      headers=headers)
    assert pdf.status_code == 400
    monkeypatch.setattr(settings, 'MAX_PHOTO_BYTES', 16)
    big = client.post('/api/profile/me/photo', files={'photo': ('me.png', PNG, 'image/png')}, headers=headers)
    assert big.status_code == 400

    d = client.delete('/api/profile/me/photo', headers=headers)
    assert d.status_code == 200
    assert d.json()['profile_photo'] is None
    assert client.get(url).status_code == 404
    assert client.delete('/api/profile/me/photo', headers=headers).status_code == 400


def test_public_profile_and_search(db, make_user):
    user, headers = make_user(name='Sakura Tanaka', points=120)
    make_user(email='hidden@example.com', name='Sakura Hidden', is_active=False)
    client.post('/api/community/posts', json={'content': 'hi'}, headers=headers)

    r = client.get(f'/api/public/profile/{user.id}')
    assert r.status_code == 200
    body = r.json()
    assert 'points' not in body['profile']
    assert body['stats']['points'] == 120
    assert body['stats']['community_posts'] == 1
    assert {a['id'] for a in body['achievements']} == {'points-100'}
    assert client.get('/api/public/profile/missing').status_code == 404

    found = client.get('/api/users/search', params={'q': 'sakura'}, headers=headers).json()
    assert [p['name'] for p in found] == ['Sakura Tanaka']
    assert client.get('/api/users/search', params={'q': ''}, headers=headers).status_code == 422
    assert client.get(f'/api/users/profile/{user.id}', headers=headers).json()['name'] == 'Sakura Tanaka'
    assert client.get(f'/api/profile/{user.id}', headers=headers).status_code == 200


def test_dashboard_data(db, make_user, make_session):
    user, headers = make_user(points=0)
    course = repositories.CourseRepository(db).create(
        models.Course(title='Everyday Japanese', type=models.CourseType.JAPAN_IN_CONTEXT))
    lessons = [
        repositories.LessonRepository(db).create(
            models.Lesson(course_id=course.id, title=f'L{i}', order=i, points_reward=10))
        for i in (1, 2)
    ]
    client.post(f'/api/courses/{course.id}/enroll', headers=headers)
    client.post(f'/api/courses/lessons/{lessons[0].id}/complete', json={}, headers=headers)
    live = make_session(scheduled_at=utcnow() + timedelta(days=1))
    client.post('/api/bookings', json={'session_id': live.id}, headers=headers)

    data = client.get('/api/dashboard/data', headers=headers).json()
    assert data['stats']['total_lessons_completed'] == 1
    assert data['stats']['total_lessons_available'] == 2
    assert data['stats']['upcoming_sessions'] == 1
    assert data['course_progress'][0]['progress_percentage'] == 50
    assert data['user']['points'] == 10
    types = {a['type'] for a in data['recent_activity']}
    assert {'lesson_completed', 'points_earned', 'session_booked'} <= types
    assert [a['id'] for a in data['achievements']] == ['first-lesson']


def test_achievements_are_capped():
    stats = {'lessons_completed': 10, 'posts': 5, 'points': 900, 'level': 10}
    assert len(unlocked_achievements(stats)) == 5
