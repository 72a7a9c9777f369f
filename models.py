from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

INVOICE_STATUSES = ('draft', 'sent', 'overdue', 'paid', 'canceled')
REMINDER_TYPES = ('initial', 'followup')

# Identity and profile
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(50), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    profile = db.relationship('Profile', uselist=False, backref='user')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

class Profile(db.Model):
    __tablename__ = 'profiles'

    id = db.Column(db.String(50), db.ForeignKey('users.id'), primary_key=True)
    full_name = db.Column(db.String(200))
    clinic_name = db.Column(db.String(200))
    bank_name = db.Column(db.String(100))
    account_number = db.Column(db.String(30))
    sort_code = db.Column(db.String(20))
    logo_url = db.Column(db.String(500))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Columns a user may set on their own profile
    EDITABLE_FIELDS = ('full_name', 'clinic_name', 'bank_name', 'account_number', 'sort_code', 'logo_url')

    def bank_details(self):
        """``"<bank> <sort code> <account>"`` or None unless both sort code and account are set."""
        if not (self.account_number and self.sort_code):
            return None
        return f"{self.bank_name or ''} {self.sort_code} {self.account_number}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'clinic_name': self.clinic_name,
            'bank_name': self.bank_name,
            'account_number': self.account_number,
            'sort_code': self.sort_code,
            'logo_url': self.logo_url,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

# Invoicing
class Invoice(db.Model):
    __tablename__ = 'invoices'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False, index=True)
    invoice_number = db.Column(db.String(50), nullable=False)
    patient_name = db.Column(db.String(200))
    patient_contact = db.Column(db.String(255))  # phone number or email address
    practitioner_name = db.Column(db.String(200))
    treatment_name = db.Column(db.String(200))
    treatment_date = db.Column(db.Date)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.Enum(*INVOICE_STATUSES, name='invoice_status'), default='draft', nullable=False)
    notes = db.Column(db.Text)
    invoice_pdf_url = db.Column(db.String(500))
    followup_claimed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref='invoices')
    reminders = db.relationship('PaymentReminder', backref='invoice', order_by=lambda: PaymentReminder.sent_at.desc())

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'invoice_number': self.invoice_number,
            'patient_name': self.patient_name,
            'patient_contact': self.patient_contact,
            'practitioner_name': self.practitioner_name,
            'treatment_name': self.treatment_name,
            'treatment_date': self.treatment_date.isoformat() if self.treatment_date else None,
            'amount': float(self.amount),
            'issue_date': self.issue_date.isoformat(),
            'status': self.status,
            'notes': self.notes,
            'invoice_pdf_url': self.invoice_pdf_url,
        }

class PaymentReminder(db.Model):
    """Append-only log of reminders sent for an invoice."""
    __tablename__ = 'payment_reminders'

    id = db.Column(db.String(50), primary_key=True)
    invoice_id = db.Column(db.String(50), db.ForeignKey('invoices.id'), nullable=False, index=True)
    patient_phone = db.Column(db.String(255))
    reminder_type = db.Column(db.Enum(*REMINDER_TYPES, name='reminder_type'), nullable=False)
    message_sent = db.Column(db.Text, nullable=False)
    sent_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

# Billing
class Subscription(db.Model):
    __tablename__ = 'subscriptions'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), unique=True, nullable=False)
    stripe_customer_id = db.Column(db.String(100), unique=True)
    stripe_subscription_id = db.Column(db.String(100), index=True)
    status = db.Column(db.String(30))
    plan_id = db.Column(db.String(100))
    current_period_start = db.Column(db.DateTime)
    current_period_end = db.Column(db.DateTime)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'stripe_customer_id': self.stripe_customer_id,
            'stripe_subscription_id': self.stripe_subscription_id,
            'status': self.status,
            'plan_id': self.plan_id,
            'current_period_start': self.current_period_start.isoformat() if self.current_period_start else None,
            'current_period_end': self.current_period_end.isoformat() if self.current_period_end else None,
            'cancel_at_period_end': bool(self.cancel_at_period_end),
        }

class SubscriptionExemption(db.Model):
    __tablename__ = 'subscription_exemptions'

    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), primary_key=True)
    reason = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

# Assistant and exports
class ChatHistory(db.Model):
    __tablename__ = 'chat_history'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    question = db.Column(db.Text, nullable=False)
    answer = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class ExportHistory(db.Model):
    __tablename__ = 'export_history'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    export_type = db.Column(db.String(50), nullable=False)
    filename = db.Column(db.String(255), nullable=False)
    record_count = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

# Clinic records (no API surface; seeded by the CLI, read by exports)
class Patient(db.Model):
    __tablename__ = 'patients'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(30))
    email = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class Practitioner(db.Model):
    __tablename__ = 'practitioners'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class TreatmentCatalog(db.Model):
    __tablename__ = 'treatment_catalog'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    default_price = db.Column(db.Numeric(10, 2))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class TreatmentEntry(db.Model):
    __tablename__ = 'treatment_entries'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    patient_id = db.Column(db.String(50), db.ForeignKey('patients.id'))
    treatment_name = db.Column(db.String(200), nullable=False)
    price_paid = db.Column(db.Numeric(10, 2), nullable=False)
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    patient = db.relationship('Patient')

class Expense(db.Model):
    __tablename__ = 'expenses'

    id = db.Column(db.String(50), primary_key=True)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=False)
    category = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
