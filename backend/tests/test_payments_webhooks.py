import inspect
import json
import time

import pytest
from fastapi.testclient import TestClient

from thrive import models, repositories
from thrive.errors import PaymentError
from thrive.main import app
from thrive.routers import payment as payment_router
from thrive.services.payments import PaymentGateway, map_stripe_status
from thrive.utils.dates import utcnow

client = TestClient(app)


def _webhook(event, signature='valid'):
    return client.post('/api/payment/webhook', content=json.dumps(event),
                       headers={'stripe-signature': signature, 'Content-Type': 'application/json'})


def _stripe_sub(sub_id, status='active', customer='cus_1', metadata=None, interval='month'):
    now = int(time.time())
    return {
        'id': sub_id,
        'customer': customer,
        'status': status,
        'metadata': metadata or {},
        'current_period_start': now,
        'current_period_end': now + 30 * 86400,
        'items': {'data': [{'price': {'id': 'price_x', 'recurring': {'interval': interval}}}]},
    }


def _verified(db, email):
    code = repositories.VerificationCodeRepository(db).create(models.VerificationCode(
        email=email, code='123456', expires_at=utcnow()))
    code.verified = True
    code.verified_at = utcnow()
    repositories.VerificationCodeRepository(db).save(code)


def test_webhook_signature_checks(gateway):
    event = {'id': 'evt_1', 'type': 'ping', 'data': {'object': {}}}
    assert client.post('/api/payment/webhook', content=json.dumps(event)).status_code == 400
    assert _webhook(event, signature='forged').status_code == 400
    r = _webhook(event)
    assert r.status_code == 200
    assert r.json() == {'received': True, 'handled': False}


def test_webhook_handler_is_not_a_coroutine():
    # blocking Stripe and DB calls must stay off the event loop
    assert not inspect.iscoroutinefunction(payment_router.stripe_webhook)


def test_unconfigured_gateway_reports_service_unavailable():
    gw = PaymentGateway(api_key="", webhook_secret="")
    with pytest.raises(PaymentError) as exc:
        gw.retrieve_payment_intent("pi_1")
    assert exc.value.status_code == 503
    with pytest.raises(PaymentError):
        gw.construct_event(b"{}", "sig")


def test_anonymous_payment_requires_verified_email(db, gateway):
    r = client.post('/api/payment/create-payment-intent', json={'email': 'anon@example.com'})
    assert r.status_code == 403
    assert client.post('/api/payment/create-payment-intent', json={}).status_code == 400

    _verified(db, 'anon@example.com')
    r2 = client.post('/api/payment/create-payment-intent', json={'email': 'anon@example.com'})
    assert r2.status_code == 200
    intent_id = r2.json()['payment_intent_id']
    assert r2.json()['client_secret'] == f'{intent_id}_secret'
    payment = repositories.PaymentRepository(db).get_by_intent(intent_id)
    assert payment.status == models.PaymentStatus.PENDING
    assert payment.amount == 5000
    assert payment.payment_metadata['email'] == 'anon@example.com'


def test_checkout_session_for_signed_in_user(gateway, make_user):
    user, headers = make_user()
    r = client.post('/api/payment/create-checkout-session', json={'price_id': 'price_month'}, headers=headers)
    assert r.status_code == 200
    assert r.json()['url'].startswith('https://checkout.stripe.test/')
    created = gateway.created_checkouts[0]
    assert created['mode'] == 'subscription'
    assert created['metadata']['user_id'] == user.id
    assert created['customer_email'] == user.email


def test_verify_checkout_records_payment_once(db, gateway, make_user):
    user, _ = make_user()
    gateway.checkout_sessions['cs_paid'] = {
        'id': 'cs_paid', 'mode': 'payment', 'payment_status': 'paid', 'payment_intent': 'pi_cs',
        'amount_total': 5000, 'currency': 'jpy', 'customer': 'cus_9',
        'customer_details': {'email': user.email}, 'metadata': {'user_id': user.id},
    }
    for _ in range(2):
        r = client.post('/api/payment/verify-checkout-session', json={'session_id': 'cs_paid'})
        assert r.status_code == 200
        assert r.json()['payment_intent_id'] == 'pi_cs'
    payment = repositories.PaymentRepository(db).get_by_intent('pi_cs')
    assert payment.status == models.PaymentStatus.COMPLETED
    subs = repositories.SubscriptionRepository(db).list_for_user(user.id)
    assert len(subs) == 1
    assert subs[0].plan == models.SubscriptionPlan.ONE_TIME
    assert client.post('/api/payment/verify-checkout-session', json={'session_id': 'cs_nope'}).status_code == 404


def test_subscription_lifecycle_via_webhooks(db, gateway, make_user):
    user, headers = make_user(email='sub@example.com')
    gateway.subscriptions['sub_1'] = _stripe_sub('sub_1', status='trialing', metadata={'user_id': user.id})
    r = _webhook({'type': 'checkout.session.completed', 'data': {'object': {
        'id': 'cs_1', 'mode': 'subscription', 'subscription': 'sub_1', 'customer': 'cus_1',
        'payment_status': 'paid', 'amount_total': 0, 'customer_email': 'sub@example.com',
        'metadata': {'user_id': user.id},
    }}})
    assert r.json() == {'received': True, 'handled': True}
    check = client.get('/api/subscriptions/check', headers=headers).json()
    assert check['has_active_subscription'] is True
    assert check['has_trialing_subscription'] is True

    _webhook({'type': 'customer.subscription.updated', 'data': {'object': _stripe_sub('sub_1', 'incomplete')}})
    db.expire_all()
    row = repositories.SubscriptionRepository(db).get_by_stripe_id('sub_1')
    assert row.status == models.SubscriptionStatus.UNPAID
    assert row.user_id == user.id

    _webhook({'type': 'invoice.payment_succeeded', 'data': {'object': {
        'id': 'in_1', 'subscription': 'sub_1', 'payment_intent': 'pi_inv', 'amount_paid': 1500,
        'currency': 'jpy', 'customer_email': 'sub@example.com',
    }}})
    db.expire_all()
    assert repositories.SubscriptionRepository(db).get_by_stripe_id('sub_1').status == models.SubscriptionStatus.ACTIVE
    assert repositories.PaymentRepository(db).get_by_intent('pi_inv').amount == 1500

    _webhook({'type': 'invoice.payment_failed', 'data': {'object': {'id': 'in_2', 'subscription': 'sub_1'}}})
    db.expire_all()
    assert repositories.SubscriptionRepository(db).get_by_stripe_id('sub_1').status == models.SubscriptionStatus.PAST_DUE
    assert client.get('/api/subscriptions/check', headers=headers).json()['has_active_subscription'] is False

    _webhook({'type': 'customer.subscription.deleted', 'data': {'object': {'id': 'sub_1'}}})
    mine = client.get('/api/subscriptions/my-subscriptions', headers=headers).json()
    assert mine[0]['status'] == 'canceled'


def test_failed_intent_never_downgrades_completed(db, gateway):
    _webhook({'type': 'payment_intent.payment_failed', 'data': {'object': {
        'id': 'pi_fail', 'amount': 5000, 'currency': 'jpy', 'metadata': {'email': 'x@example.com'},
        'last_payment_error': {'message': 'card declined'},
    }}})
    payment = repositories.PaymentRepository(db).get_by_intent('pi_fail')
    assert payment.status == models.PaymentStatus.FAILED
    assert payment.payment_metadata['error'] == 'card declined'

    repositories.PaymentRepository(db).create(models.Payment(
        email='y@example.com', stripe_payment_intent_id='pi_done', amount=5000,
        status=models.PaymentStatus.COMPLETED))
    _webhook({'type': 'payment_intent.payment_failed', 'data': {'object': {'id': 'pi_done', 'amount': 5000}}})
    db.expire_all()
    assert repositories.PaymentRepository(db).get_by_intent('pi_done').status == models.PaymentStatus.COMPLETED


def test_end_trial_and_customer_portal(db, gateway, make_user):
    user, headers = make_user()
    assert client.post('/api/payment/end-trial', headers=headers).status_code == 404
    assert client.post('/api/payment/customer-portal', headers=headers).status_code == 404

    gateway.subscriptions['sub_t'] = _stripe_sub('sub_t', status='trialing', customer='cus_t')
    repositories.SubscriptionRepository(db).create(models.Subscription(
        user_id=user.id, stripe_subscription_id='sub_t', stripe_customer_id='cus_t',
        status=models.SubscriptionStatus.TRIALING))
    r = client.post('/api/payment/end-trial', headers=headers)
    assert r.status_code == 200
    assert r.json()['status'] == 'active'
    portal = client.post('/api/payment/customer-portal', json={'return_url': 'https://app.example.com'},
                         headers=headers)
    assert portal.json() == {'url': 'https://billing.stripe.test/cus_t'}


def test_admin_always_has_access(admin):
    _, headers = admin
    check = client.get('/api/subscriptions/check', headers=headers).json()
    assert check['has_active_subscription'] is True
    assert check['has_any_subscription'] is False
    assert check['status'] == 'active'


def test_stripe_status_mapping():
    assert map_stripe_status('incomplete') == models.SubscriptionStatus.UNPAID
    assert map_stripe_status('incomplete_expired') == models.SubscriptionStatus.CANCELED
    assert map_stripe_status('trialing') == models.SubscriptionStatus.TRIALING
    assert map_stripe_status('something-new') == models.SubscriptionStatus.UNPAID
