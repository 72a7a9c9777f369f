import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config import Settings
from email_service import EmailSender
from errors import ProviderError
from models import db, User, Profile, Invoice, PaymentReminder
from sms_service import SmsSender

NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeSmsSender(SmsSender):
    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, to_number, body):
        if to_number in self.failing:
            raise ProviderError(f'Twilio error - cannot deliver to {to_number}')
        self.sent.append((to_number, body))
        return f'SM{len(self.sent)}'


class FakeEmailService(EmailSender):
    configured = True

    def __init__(self):
        self.sent = []

    def send_email(self, to_email, subject, html, attachments=None):
        self.sent.append({'to': to_email, 'subject': subject, 'html': html, 'attachments': attachments or []})
        return 'email-id'


@pytest.fixture
def sms():
    return FakeSmsSender()


@pytest.fixture
def email():
    return FakeEmailService()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url='sqlite://',
        invoice_pdf_dir=str(tmp_path / 'pdfs'),
        public_base_url='http://api.test',
        site_url='http://app.test',
        cron_secret=None,
        stripe_secret_key='sk_test_123',
        stripe_webhook_secret='whsec_123',
        log_level='WARNING',
    )


@pytest.fixture
def app(settings, sms, email):
    app = create_app(settings, sms_sender=sms, email_service=email, clock=lambda: NOW)
    app.config['TESTING'] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(email='owner@clinic.test', clinic_name='Glow Clinic', bank=True):
    user = User(id=str(uuid.uuid4()), email=email, full_name='Clinic Owner')
    user.set_password('secret123')
    db.session.add(user)
    profile = Profile(id=user.id, full_name='Clinic Owner', clinic_name=clinic_name)
    if bank:
        profile.bank_name = 'Monzo'
        profile.sort_code = '04-00-04'
        profile.account_number = '12345678'
    db.session.add(profile)
    db.session.commit()
    return user


def make_invoice(user, issued_days_ago=10, status='sent', contact='+447700900001', amount='120.00', number='INV-0001'):
    invoice = Invoice(
        id=str(uuid.uuid4()),
        user_id=user.id,
        invoice_number=number,
        patient_name='Sam Carter',
        patient_contact=contact,
        treatment_name='Lip filler 1ml',
        amount=Decimal(amount),
        issue_date=(NOW - timedelta(days=issued_days_ago)).date(),
        status=status,
    )
    db.session.add(invoice)
    db.session.commit()
    return invoice


def add_reminders(invoice, *days_ago):
    """One reminder per entry, the first being the initial one."""
    for index, age in enumerate(days_ago):
        db.session.add(PaymentReminder(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            patient_phone=invoice.patient_contact,
            reminder_type='initial' if index == 0 else 'followup',
            message_sent='earlier reminder',
            sent_at=NOW - timedelta(days=age),
        ))
    db.session.commit()


def auth_headers(user):
    return {'Authorization': f'Bearer {create_access_token(identity=user.id)}'}
