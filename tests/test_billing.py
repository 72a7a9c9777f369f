import hashlib
import hmac
import json
import time
from datetime import datetime

import pytest
import stripe

from models import db, Subscription, SubscriptionExemption
from conftest import make_user, auth_headers

PERIOD_START = 1772409600  # 2026-03-02
PERIOD_END = 1775088000    # 2026-04-02


def stripe_subscription(sub_id='sub_123', status='active', price='price_pro'):
    return {
        'id': sub_id,
        'status': status,
        'items': {'data': [{'price': {'id': price}}]},
        'current_period_start': PERIOD_START,
        'current_period_end': PERIOD_END,
        'cancel_at_period_end': False,
    }


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = {'customers': [], 'sessions': []}

    def create_customer(**kwargs):
        calls['customers'].append(kwargs)
        return {'id': 'cus_123'}

    def create_session(**kwargs):
        calls['sessions'].append(kwargs)
        return {'id': 'cs_123', 'url': 'https://checkout.stripe.test/cs_123'}

    monkeypatch.setattr(stripe.Customer, 'create', create_customer)
    monkeypatch.setattr(stripe.checkout.Session, 'create', create_session)
    return calls


def webhook_event(monkeypatch, event):
    monkeypatch.setattr(stripe.Webhook, 'construct_event', lambda payload, signature, secret: event)


def test_checkout_creates_customer_once(client, stripe_calls):
    user = make_user()

    first = client.post('/api/functions/create-checkout-session', json={'priceId': 'price_pro'},
                        headers=auth_headers(user))
    second = client.post('/api/functions/create-checkout-session', json={'priceId': 'price_pro'},
                         headers=auth_headers(user))

    assert first.status_code == 200
    assert first.get_json() == {'url': 'https://checkout.stripe.test/cs_123'}
    assert second.status_code == 200
    assert len(stripe_calls['customers']) == 1
    assert stripe_calls['customers'][0]['metadata'] == {'user_id': user.id}

    session = stripe_calls['sessions'][0]
    assert session['customer'] == 'cus_123'
    assert session['mode'] == 'subscription'
    assert session['line_items'] == [{'price': 'price_pro', 'quantity': 1}]
    assert session['success_url'] == 'http://app.test/Billing?success=true&session_id={CHECKOUT_SESSION_ID}'
    assert session['metadata'] == {'user_id': user.id}
    assert Subscription.query.filter_by(user_id=user.id).one().stripe_customer_id == 'cus_123'


def test_checkout_requires_price(client, stripe_calls):
    user = make_user()

    response = client.post('/api/functions/create-checkout-session', json={}, headers=auth_headers(user))

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Price ID is required'}
    assert stripe_calls['customers'] == []


def test_sync_rejects_session_of_another_user(client, monkeypatch):
    user = make_user()
    monkeypatch.setattr(stripe.checkout.Session, 'retrieve', lambda session_id, **kwargs: {
        'id': session_id,
        'metadata': {'user_id': 'someone-else'},
        'customer': 'cus_999',
        'subscription': stripe_subscription(),
    })

    response = client.post('/api/functions/sync-checkout-session', json={'session_id': 'cs_foreign'},
                           headers=auth_headers(user))

    assert response.status_code == 403
    assert response.get_json() == {'error': 'Session does not belong to this user'}
    assert Subscription.query.count() == 0


def test_sync_upserts_subscription(client, monkeypatch):
    user = make_user()
    seen = {}

    def retrieve(session_id, **kwargs):
        seen.update(kwargs)
        return {
            'id': session_id,
            'metadata': {'user_id': user.id},
            'customer': 'cus_123',
            'subscription': stripe_subscription(),
        }

    monkeypatch.setattr(stripe.checkout.Session, 'retrieve', retrieve)

    response = client.post('/api/functions/sync-checkout-session', json={'session_id': 'cs_123'},
                           headers=auth_headers(user))

    assert response.status_code == 200
    assert response.get_json() == {'ok': True}
    assert seen['expand'] == ['subscription']
    subscription = Subscription.query.filter_by(user_id=user.id).one()
    assert subscription.stripe_customer_id == 'cus_123'
    assert subscription.stripe_subscription_id == 'sub_123'
    assert subscription.status == 'active'
    assert subscription.plan_id == 'price_pro'
    assert subscription.current_period_start == datetime(2026, 3, 2)
    assert subscription.cancel_at_period_end is False


def test_sync_requires_session_id(client):
    user = make_user()

    response = client.post('/api/functions/sync-checkout-session', json={}, headers=auth_headers(user))

    assert response.status_code == 400


def test_webhook_without_signature(client):
    response = client.post('/api/functions/stripe-webhook', data=b'{}')

    assert response.status_code == 400
    assert response.get_json() == {'error': 'No signature'}


def test_webhook_with_bad_signature(client, monkeypatch):
    def reject(payload, signature, secret):
        raise stripe.SignatureVerificationError('bad signature', signature)

    monkeypatch.setattr(stripe.Webhook, 'construct_event', reject)

    response = client.post('/api/functions/stripe-webhook', data=b'{}', headers={'Stripe-Signature': 't=1,v1=x'})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid signature'}
    assert Subscription.query.count() == 0


def test_webhook_checkout_completed_upserts(client, monkeypatch):
    user = make_user()
    webhook_event(monkeypatch, {
        'type': 'checkout.session.completed',
        'data': {'object': {
            'id': 'cs_123',
            'customer': 'cus_123',
            'subscription': 'sub_123',
            'metadata': {'user_id': user.id},
        }},
    })
    monkeypatch.setattr(stripe.Subscription, 'retrieve',
                        lambda subscription_id, **kwargs: stripe_subscription(subscription_id, status='trialing'))

    response = client.post('/api/functions/stripe-webhook', data=b'{}', headers={'Stripe-Signature': 'sig'})

    assert response.status_code == 200
    assert response.get_json() == {'received': True}
    subscription = Subscription.query.filter_by(stripe_customer_id='cus_123').one()
    assert subscription.user_id == user.id
    assert subscription.status == 'trialing'


@pytest.mark.parametrize('event_type, obj, expected', [
    ('customer.subscription.deleted', {'id': 'sub_123'}, 'canceled'),
    ('invoice.payment_failed', {'id': 'in_1', 'subscription': 'sub_123'}, 'past_due'),
    ('customer.subscription.updated', stripe_subscription(status='past_due'), 'past_due'),
])
def test_webhook_status_changes(client, monkeypatch, event_type, obj, expected):
    user = make_user()
    db.session.add(Subscription(id='row-1', user_id=user.id, stripe_customer_id='cus_123',
                                stripe_subscription_id='sub_123', status='active'))
    db.session.commit()
    webhook_event(monkeypatch, {'type': event_type, 'data': {'object': obj}})

    response = client.post('/api/functions/stripe-webhook', data=b'{}', headers={'Stripe-Signature': 'sig'})

    assert response.status_code == 200
    db.session.expire_all()
    assert db.session.get(Subscription, 'row-1').status == expected


def test_exempt_user_has_free_access(client):
    user = make_user()
    db.session.add(SubscriptionExemption(user_id=user.id, reason='staff'))
    db.session.commit()

    response = client.get('/api/subscription', headers=auth_headers(user))

    assert response.get_json() == {
        'subscription': {'status': 'active', 'plan_id': 'Free access', 'user_id': user.id},
        'active': True,
    }


def test_user_without_subscription_is_inactive(client):
    user = make_user()

    response = client.get('/api/subscription', headers=auth_headers(user))

    assert response.get_json() == {'subscription': None, 'active': False}


def signature_header(payload, secret='whsec_123'):
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f'{timestamp}.{payload}'.encode(), hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


def checkout_completed_payload(user_id):
    return json.dumps({
        'id': 'evt_1',
        'object': 'event',
        'type': 'checkout.session.completed',
        'data': {'object': {
            'id': 'cs_123',
            'object': 'checkout.session',
            'customer': 'cus_123',
            'subscription': 'sub_123',
            'metadata': {'user_id': user_id},
        }},
    })


def test_signed_webhook_is_verified_and_applied(client, monkeypatch):
    user = make_user()
    payload = checkout_completed_payload(user.id)
    monkeypatch.setattr(stripe.Subscription, 'retrieve',
                        lambda subscription_id, **kwargs: stripe_subscription(subscription_id))

    response = client.post('/api/functions/stripe-webhook', data=payload,
                           headers={'Stripe-Signature': signature_header(payload),
                                    'Content-Type': 'application/json'})

    assert response.status_code == 200
    assert response.get_json() == {'received': True}
    subscription = Subscription.query.filter_by(stripe_customer_id='cus_123').one()
    assert subscription.user_id == user.id
    assert subscription.status == 'active'


def test_tampered_webhook_body_is_rejected(client, monkeypatch):
    user = make_user()
    payload = checkout_completed_payload(user.id)
    monkeypatch.setattr(stripe.Subscription, 'retrieve',
                        lambda subscription_id, **kwargs: stripe_subscription(subscription_id))

    tampered = payload.replace('cus_123', 'cus_999')
    response = client.post('/api/functions/stripe-webhook', data=tampered,
                           headers={'Stripe-Signature': signature_header(payload),
                                    'Content-Type': 'application/json'})

    assert response.status_code == 400
    assert response.get_json() == {'error': 'Invalid signature'}
    assert Subscription.query.count() == 0
