import logging
import uuid
from datetime import datetime
import stripe
from models import db, Subscription, SubscriptionExemption
from errors import ValidationError, ForbiddenError, ProviderError

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('active', 'trialing')


def _field(obj, key, default=None):
    """Item lookup that works for dicts and StripeObjects alike."""
    if obj is None or isinstance(obj, str):
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _timestamp(value):
    return datetime.utcfromtimestamp(value) if value else None


def _stripe_message(e):
    return getattr(e, 'user_message', None) or str(e)


def subscription_fields(subscription):
    """Columns of a Subscription row taken from a Stripe subscription object."""
    items = _field(_field(subscription, 'items'), 'data', [])
    first_item = items[0] if items else None
    # Newer API versions carry the period on the item rather than the subscription
    period_source = subscription if _field(subscription, 'current_period_start') else first_item
    return {
        'stripe_subscription_id': _field(subscription, 'id'),
        'status': _field(subscription, 'status', 'active'),
        'plan_id': _field(_field(first_item, 'price'), 'id'),
        'current_period_start': _timestamp(_field(period_source, 'current_period_start')),
        'current_period_end': _timestamp(_field(period_source, 'current_period_end')),
        'cancel_at_period_end': bool(_field(subscription, 'cancel_at_period_end', False)),
    }


def upsert_subscription(user_id, customer_id, fields):
    """Insert or update the row keyed by Stripe customer id (falling back to user id)."""
    subscription = Subscription.query.filter_by(stripe_customer_id=customer_id).first()
    if subscription is None:
        subscription = Subscription.query.filter_by(user_id=user_id).first()
    if subscription is None:
        subscription = Subscription(id=str(uuid.uuid4()), user_id=user_id)
        db.session.add(subscription)

    subscription.user_id = user_id
    subscription.stripe_customer_id = customer_id
    for key, value in fields.items():
        setattr(subscription, key, value)
    db.session.commit()
    return subscription


class BillingService:
    def __init__(self, settings):
        self.settings = settings

    def _api_key(self):
        self.settings.require_stripe()
        return self.settings.stripe_secret_key

    def get_or_create_customer(self, user):
        subscription = Subscription.query.filter_by(user_id=user.id).first()
        if subscription and subscription.stripe_customer_id:
            return subscription.stripe_customer_id

        try:
            customer = stripe.Customer.create(
                api_key=self._api_key(),
                email=user.email or '',
                metadata={'user_id': user.id},
            )
        except stripe.StripeError as e:
            raise ProviderError(f'Stripe customer: {_stripe_message(e)}')

        customer_id = customer['id']
        if subscription is None:
            subscription = Subscription(id=str(uuid.uuid4()), user_id=user.id)
            db.session.add(subscription)
        subscription.stripe_customer_id = customer_id
        db.session.commit()
        logger.info("Created Stripe customer %s for user %s", customer_id, user.id)
        return customer_id

    def create_checkout_session(self, user, price_id):
        if not price_id:
            raise ValidationError('Price ID is required')

        api_key = self._api_key()
        customer_id = self.get_or_create_customer(user)
        site_url = self.settings.site_url.rstrip('/')

        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                customer=customer_id,
                mode='subscription',
                payment_method_types=['card'],
                line_items=[{'price': price_id, 'quantity': 1}],
                success_url=f'{site_url}/Billing?success=true&session_id={{CHECKOUT_SESSION_ID}}',
                cancel_url=f'{site_url}/SubscriptionPricing?canceled=true',
                metadata={'user_id': user.id},
            )
        except stripe.StripeError as e:
            raise ProviderError(f'Stripe checkout: {_stripe_message(e)}')

        url = _field(session, 'url')
        if not url:
            raise ProviderError('No checkout URL returned from Stripe')
        return {'url': url}

    def handle_webhook(self, payload, signature):
        if not signature:
            raise ValidationError('No signature')
        self.settings.require_stripe_webhook()

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.settings.stripe_webhook_secret)
        except ValueError:
            raise ValidationError('Invalid payload')
        except stripe.SignatureVerificationError:
            raise ValidationError('Invalid signature')

        event_type = event['type']
        obj = event['data']['object']
        logger.info("Stripe webhook %s", event_type)

        if event_type == 'checkout.session.completed':
            self._checkout_completed(obj)
        elif event_type == 'customer.subscription.updated':
            existing = Subscription.query.filter_by(stripe_subscription_id=_field(obj, 'id')).first()
            if existing:
                for key, value in subscription_fields(obj).items():
                    setattr(existing, key, value)
                db.session.commit()
        elif event_type == 'customer.subscription.deleted':
            self._set_status(_field(obj, 'id'), 'canceled')
        elif event_type == 'invoice.payment_failed':
            subscription_id = _field(obj, 'subscription')
            if subscription_id:
                self._set_status(subscription_id, 'past_due')

        return {'received': True}

    def _checkout_completed(self, session):
        user_id = _field(_field(session, 'metadata'), 'user_id')
        customer_id = _field(session, 'customer')
        subscription_id = _field(session, 'subscription')
        if not user_id or not subscription_id:
            logger.warning("Checkout session %s has no user or subscription", _field(session, 'id'))
            return

        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._api_key())
        except stripe.StripeError as e:
            raise ProviderError(f'Stripe subscription: {_stripe_message(e)}')
        upsert_subscription(user_id, customer_id, subscription_fields(subscription))

    def _set_status(self, stripe_subscription_id, status):
        Subscription.query.filter_by(stripe_subscription_id=stripe_subscription_id).update({'status': status})
        db.session.commit()

    def sync_checkout_session(self, user_id, session_id):
        """Pull a finished checkout session and store its subscription, for when the webhook is late."""
        if not session_id or not isinstance(session_id, str):
            raise ValidationError('session_id is required')

        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._api_key(), expand=['subscription'])
        except stripe.StripeError as e:
            raise ValidationError(f'Stripe session: {_stripe_message(e)}')

        if _field(_field(session, 'metadata'), 'user_id') != user_id:
            raise ForbiddenError('Session does not belong to this user')

        customer_id = _field(session, 'customer')
        sub = _field(session, 'subscription')
        if not customer_id or not sub:
            raise ValidationError('No subscription on session')

        if isinstance(sub, str):
            fields = {'stripe_subscription_id': sub, 'status': 'active', 'plan_id': None,
                      'current_period_start': None, 'current_period_end': None, 'cancel_at_period_end': False}
        else:
            fields = subscription_fields(sub)

        upsert_subscription(user_id, customer_id, fields)
        return {'ok': True}

    def get_subscription(self, user_id):
        if db.session.get(SubscriptionExemption, user_id):
            return {'status': 'active', 'plan_id': 'Free access', 'user_id': user_id}
        subscription = Subscription.query.filter_by(user_id=user_id).first()
        return subscription.to_dict() if subscription else None

    def has_active_subscription(self, user_id):
        subscription = self.get_subscription(user_id)
        return bool(subscription) and subscription.get('status') in ACTIVE_STATUSES
