import os
from datetime import timedelta
from dotenv import load_dotenv
from errors import ConfigurationError

load_dotenv()


def _int(name, default):
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f'{name} must be an integer, got {raw!r}')


def _intervals(name, default):
    raw = os.getenv(name)
    if not raw:
        return list(default)
    try:
        return [int(part) for part in raw.split(',') if part.strip()]
    except ValueError:
        raise ConfigurationError(f'{name} must be a comma separated list of days, got {raw!r}')


class FollowupConfig:
    """Cadence for overdue-payment follow-ups.

    ``intervals`` are day offsets from the invoice issue date; entry ``i`` is
    when follow-up ``i`` (the reminder after the ``i``-th one already sent)
    becomes eligible.
    """

    def __init__(self, intervals=(7, 14, 30), max_followups=3):
        self.intervals = list(intervals)
        self.max_followups = max_followups
        self.validate()

    def validate(self):
        if not self.intervals:
            raise ConfigurationError('Follow-up intervals must not be empty')
        if any(days < 0 for days in self.intervals):
            raise ConfigurationError('Follow-up intervals must be non-negative')
        if self.intervals != sorted(self.intervals):
            raise ConfigurationError('Follow-up intervals must be in ascending order')
        if self.max_followups < 0:
            raise ConfigurationError('MAX_FOLLOWUPS must be non-negative')


class Settings:
    """Everything the service reads from the environment, read once."""

    def __init__(self, **overrides):
        self.secret_key = os.getenv('SECRET_KEY', 'dev-secret-key')
        self.jwt_secret_key = os.getenv('JWT_SECRET_KEY', 'dev-jwt-secret-key')
        self.jwt_access_token_expires = timedelta(hours=_int('JWT_ACCESS_TOKEN_HOURS', 24))
        self.database_url = os.getenv('DATABASE_URL', 'sqlite:///clinic.db')
        self.site_url = os.getenv('SITE_URL', 'http://localhost:5173')
        self.public_base_url = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000')
        self.invoice_pdf_dir = os.getenv('INVOICE_PDF_DIR', 'invoices')
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')

        self.twilio_account_sid = os.getenv('TWILIO_ACCOUNT_SID')
        self.twilio_auth_token = os.getenv('TWILIO_AUTH_TOKEN')
        self.twilio_phone_number = os.getenv('TWILIO_PHONE_NUMBER')

        self.resend_api_key = os.getenv('RESEND_API_KEY')
        self.from_email = os.getenv('FROM_EMAIL', 'invoices@resend.dev')

        self.stripe_secret_key = os.getenv('STRIPE_SECRET_KEY')
        self.stripe_webhook_secret = os.getenv('STRIPE_WEBHOOK_SECRET')

        self.openai_api_key = os.getenv('OPENAI_API_KEY')
        self.openai_model = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')

        self.cron_secret = os.getenv('CRON_SECRET')
        self.followup_run_time = os.getenv('FOLLOWUP_RUN_TIME', '09:00')
        self.followup = FollowupConfig(
            intervals=_intervals('FOLLOWUP_INTERVALS', (7, 14, 30)),
            max_followups=_int('MAX_FOLLOWUPS', 3),
        )

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ConfigurationError(f'Unknown setting: {key}')
            setattr(self, key, value)

    def require_twilio(self):
        if not (self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number):
            raise ConfigurationError('Twilio credentials not configured')

    def require_stripe(self):
        if not self.stripe_secret_key:
            raise ConfigurationError('STRIPE_SECRET_KEY is not set')

    def require_stripe_webhook(self):
        self.require_stripe()
        if not self.stripe_webhook_secret:
            raise ConfigurationError('STRIPE_WEBHOOK_SECRET is not set')

    def require_openai(self):
        if not self.openai_api_key:
            raise ConfigurationError('OPENAI_API_KEY is not set')

    def flask_config(self):
        return {
            'SECRET_KEY': self.secret_key,
            'SQLALCHEMY_DATABASE_URI': self.database_url,
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'JWT_SECRET_KEY': self.jwt_secret_key,
            'JWT_ACCESS_TOKEN_EXPIRES': self.jwt_access_token_expires,
        }
