from fastapi.testclient import TestClient

from conftest import PASSWORD
from thrive import models, repositories
from thrive.config import settings
from thrive.main import app
from thrive.routers import auth as auth_router
from thrive.services import mailer
from thrive.utils.rate_limit import InMemoryRateLimiter

client = TestClient(app)


def _verify_email(db, email):
    r = client.post('/api/auth/send-verification-code', json={'email': email})
    assert r.status_code == 200
    code = repositories.VerificationCodeRepository(db).latest_for_email(email).code
    r2 = client.post('/api/auth/verify-email', json={'email': email, 'code': code})
    assert r2.status_code == 200
    assert r2.json()['verified'] is True


def _paid(db, email, intent_id='pi_paid', metadata=None):
    return repositories.PaymentRepository(db).create(models.Payment(
        email=email,
        stripe_payment_intent_id=intent_id,
        amount=5000,
        status=models.PaymentStatus.COMPLETED,
        payment_metadata=metadata or {},
    ))


def test_full_registration_flow_grants_access(db, gateway):
    client.cookies.clear()
    _verify_email(db, 'new@example.com')
    _paid(db, 'new@example.com')
    r = client.post('/api/auth/complete-registration', json={
        'email': 'New@Example.com', 'name': 'Hana', 'password': PASSWORD, 'stripe_payment_intent_id': 'pi_paid',
    })
    assert r.status_code == 201
    body = r.json()
    assert body['user']['email'] == 'new@example.com'
    assert body['user']['profile']['name'] == 'Hana'
    assert body['user']['profile']['points'] == 0
    assert body['access_token'] and body['csrf_token']
    assert 'access_token' in r.cookies and 'refresh_token' in r.cookies

    headers = {'Authorization': f"Bearer {body['access_token']}"}
    sub = client.get('/api/subscriptions/check', headers=headers).json()
    assert sub['has_active_subscription'] is True
    assert sub['subscriptions'][0]['plan'] == 'one-time'


def test_registration_completes_when_welcome_mail_fails(db, gateway, monkeypatch):
    client.cookies.clear()
    _verify_email(db, 'offline@example.com')
    _paid(db, 'offline@example.com')

    def broken_smtp(*args, **kwargs):
        raise OSError('connection refused')

    monkeypatch.setattr(settings, 'SMTP_HOST', 'smtp.example.com')
    monkeypatch.setattr(mailer.smtplib, 'SMTP', broken_smtp)
    r = client.post('/api/auth/complete-registration', json={
        'email': 'offline@example.com', 'name': 'Ren', 'password': PASSWORD,
        'stripe_payment_intent_id': 'pi_paid',
    })
    assert r.status_code == 201
    assert r.json()['access_token']
    assert 'refresh_token' in r.cookies


def test_registration_needs_verified_email_and_completed_payment(db, gateway):
    _paid(db, 'nobody@example.com')
    r = client.post('/api/auth/complete-registration', json={
        'email': 'nobody@example.com', 'name': 'N', 'password': PASSWORD, 'stripe_payment_intent_id': 'pi_paid',
    })
    assert r.status_code == 400

    _verify_email(db, 'pending@example.com')
    intent = gateway.create_payment_intent(5000, 'jpy', {'email': 'pending@example.com'})
    r2 = client.post('/api/auth/complete-registration', json={
        'email': 'pending@example.com', 'name': 'P', 'password': PASSWORD,
        'stripe_payment_intent_id': intent['id'],
    })
    assert r2.status_code == 400
    assert 'not been completed' in r2.json()['detail']

    # once stripe reports success the payment is recorded and accepted
    gateway.intents[intent['id']]['status'] = 'succeeded'
    r3 = client.post('/api/auth/complete-registration', json={
        'email': 'pending@example.com', 'name': 'P', 'password': PASSWORD,
        'stripe_payment_intent_id': intent['id'],
    })
    assert r3.status_code == 201
    payment = repositories.PaymentRepository(db).get_by_intent(intent['id'])
    assert payment.status == models.PaymentStatus.COMPLETED


def test_registration_rejects_weak_password_and_other_email_payment(db, gateway):
    _verify_email(db, 'weak@example.com')
    _paid(db, 'someone-else@example.com')
    r = client.post('/api/auth/complete-registration', json={
        'email': 'weak@example.com', 'name': 'W', 'password': 'password', 'stripe_payment_intent_id': 'pi_paid',
    })
    assert r.status_code == 400
    assert 'uppercase' in r.json()['detail']
    r2 = client.post('/api/auth/complete-registration', json={
        'email': 'weak@example.com', 'name': 'W', 'password': PASSWORD, 'stripe_payment_intent_id': 'pi_paid',
    })
    assert r2.status_code == 400
    assert 'different email' in r2.json()['detail']


def test_verification_code_errors(db, make_user):
    make_user(email='taken@example.com')
    r = client.post('/api/auth/send-verification-code', json={'email': 'taken@example.com'})
    assert r.status_code == 409

    client.post('/api/auth/send-verification-code', json={'email': 'code@example.com'})
    code = repositories.VerificationCodeRepository(db).latest_for_email('code@example.com').code
    wrong = '000000' if code != '000000' else '111111'
    r2 = client.post('/api/auth/verify-email', json={'email': 'code@example.com', 'code': wrong})
    assert r2.status_code == 400
    r3 = client.post('/api/auth/verify-email', json={'email': 'code@example.com', 'code': '12'})
    assert r3.status_code == 422

    # a resend invalidates the earlier code
    client.post('/api/auth/resend-verification', json={'email': 'code@example.com'})
    latest = repositories.VerificationCodeRepository(db).latest_for_email('code@example.com')
    assert client.post('/api/auth/verify-email',
                       json={'email': 'code@example.com', 'code': latest.code}).status_code == 200


def test_login_refresh_logout_cycle(make_user):
    client.cookies.clear()
    make_user(email='cycle@example.com')
    r = client.post('/api/auth/login', json={'email': 'CYCLE@example.com', 'password': PASSWORD})
    assert r.status_code == 200
    assert r.json()['expires_in'] == 15 * 60
    old_refresh = r.cookies['refresh_token']

    check = client.get('/api/auth/check')
    assert check.status_code == 200
    assert check.json()['user']['email'] == 'cycle@example.com'

    r2 = client.post('/api/auth/refresh')
    assert r2.status_code == 200
    assert r2.cookies['refresh_token'] != old_refresh

    sessions = client.get('/api/auth/sessions', headers={'Authorization': f"Bearer {r2.json()['access_token']}"})
    assert sessions.status_code == 200
    assert len(sessions.json()['sessions']) == 1

    # the rotated token can no longer be used
    client.cookies.clear()
    client.cookies.set('refresh_token', old_refresh)
    assert client.post('/api/auth/refresh').status_code == 401

    client.post('/api/auth/logout')
    client.cookies.clear()
    assert client.post('/api/auth/refresh').status_code == 403
    assert client.get('/api/auth/check').status_code == 403


def test_login_failures(make_user):
    make_user(email='active@example.com')
    make_user(email='off@example.com', is_active=False)
    r = client.post('/api/auth/login', json={'email': 'active@example.com', 'password': 'Wrong1234!'})
    assert r.status_code == 400
    assert r.json()['detail'] == 'invalid credentials'
    r2 = client.post('/api/auth/login', json={'email': 'ghost@example.com', 'password': PASSWORD})
    assert r2.status_code == 400
    r3 = client.post('/api/auth/login', json={'email': 'off@example.com', 'password': PASSWORD})
    assert r3.status_code == 400
    assert 'inactive' in r3.json()['detail']


def test_invalid_and_inactive_tokens_rejected(make_user):
    client.cookies.clear()
    r = client.get('/api/courses', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401
    assert client.get('/api/courses').status_code == 401
    _, headers = make_user(email='gone@example.com', is_active=False)
    assert client.get('/api/courses', headers=headers).status_code == 401


def test_login_rate_limit(make_user, monkeypatch):
    make_user(email='limited@example.com')
    monkeypatch.setenv('LOGIN_RATE_LIMIT', '2')
    monkeypatch.setattr(auth_router, '_rate_limiter', InMemoryRateLimiter())
    for _ in range(2):
        client.post('/api/auth/login', json={'email': 'limited@example.com', 'password': 'nope'})
    r = client.post('/api/auth/login', json={'email': 'limited@example.com', 'password': PASSWORD})
    assert r.status_code == 429
    assert int(r.headers['Retry-After']) >= 1


def test_password_reset_flow_revokes_sessions(db, make_user, monkeypatch):
    sent = {}

    def fake_reset(self, to, token):
        sent['to'] = to
        sent['token'] = token
        return True

    monkeypatch.setattr(mailer.Mailer, 'send_password_reset', fake_reset)
    user, _ = make_user(email='forgot@example.com')
    client.post('/api/auth/login', json={'email': 'forgot@example.com', 'password': PASSWORD})
    assert len(repositories.RefreshTokenRepository(db).list_for_user(user.id)) == 1

    assert client.post('/api/auth/forgot-password', json={'email': 'unknown@example.com'}).status_code == 400
    r = client.post('/api/auth/forgot-password', json={'email': 'forgot@example.com'})
    assert r.status_code == 200
    assert sent['to'] == 'forgot@example.com'

    v = client.get(f"/api/auth/reset-password/validate/{sent['token']}")
    assert v.status_code == 200
    assert v.json()['email'] == 'forgot@example.com'
    assert client.get('/api/auth/reset-password/validate/garbage').status_code == 400

    weak = client.post('/api/auth/reset-password', json={'token': sent['token'], 'new_password': 'short'})
    assert weak.status_code == 400
    ok = client.post('/api/auth/reset-password', json={'token': sent['token'], 'new_password': 'NewPassw0rd'})
    assert ok.status_code == 200
    assert repositories.RefreshTokenRepository(db).list_for_user(user.id) == []

    assert client.post('/api/auth/login', json={'email': 'forgot@example.com', 'password': PASSWORD}).status_code == 400
    assert client.post('/api/auth/login',
                       json={'email': 'forgot@example.com', 'password': 'NewPassw0rd'}).status_code == 200
