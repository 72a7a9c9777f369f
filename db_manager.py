import json
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
import click
from app import app
from models import *

@click.group()
def cli():
    """Database management commands"""
    pass

@cli.command()
def init():
    """Initialize database tables"""
    with app.app_context():
        db.create_all()
        click.echo("Database tables created successfully!")

@cli.command()
def drop():
    """Drop all database tables"""
    with app.app_context():
        db.drop_all()
        click.echo("All tables dropped successfully!")

@cli.command()
def reset():
    """Reset database (drop and recreate)"""
    with app.app_context():
        db.drop_all()
        db.create_all()
        click.echo("Database reset successfully!")

@cli.command('create-user')
@click.option('--email', required=True)
@click.option('--password', required=True)
@click.option('--clinic-name', default=None)
def create_user(email, password, clinic_name):
    """Create a clinic user with an empty profile"""
    with app.app_context():
        if User.query.filter_by(email=email.lower()).first():
            raise click.ClickException(f"User {email} already exists")
        user = User(id=str(uuid.uuid4()), email=email.lower())
        user.set_password(password)
        db.session.add(user)
        db.session.add(Profile(id=user.id, clinic_name=clinic_name))
        db.session.commit()
        click.echo(f"Created user {user.email} ({user.id})")

@cli.command()
@click.argument('email')
@click.option('--reason', default='Free access')
def exempt(email, reason):
    """Give a user free access without a subscription"""
    with app.app_context():
        user = User.query.filter_by(email=email.lower()).first()
        if not user:
            raise click.ClickException(f"No user with email {email}")
        if not db.session.get(SubscriptionExemption, user.id):
            db.session.add(SubscriptionExemption(user_id=user.id, reason=reason))
            db.session.commit()
        click.echo(f"{user.email} is exempt from subscription")

@cli.command()
def seed():
    """Seed database with a demo clinic"""
    with app.app_context():
        db.create_all()
        if User.query.filter_by(email='demo@clinic.test').first():
            click.echo("Demo clinic already seeded")
            return

        user = User(id=str(uuid.uuid4()), email='demo@clinic.test', full_name='Demo Practitioner')
        user.set_password('demo123')
        db.session.add(user)
        db.session.add(Profile(
            id=user.id,
            full_name='Demo Practitioner',
            clinic_name='Glow Aesthetics',
            bank_name='Monzo',
            account_number='12345678',
            sort_code='04-00-04',
        ))

        practitioner = Practitioner(id=str(uuid.uuid4()), user_id=user.id, name='Dr. Ada Lee')
        db.session.add(practitioner)
        for name, price in [('Anti-wrinkle (3 areas)', '250.00'), ('Lip filler 1ml', '220.00'), ('Skin booster', '180.00')]:
            db.session.add(TreatmentCatalog(id=str(uuid.uuid4()), user_id=user.id, name=name, default_price=Decimal(price)))

        today = date.today()
        now = datetime.utcnow()
        # (patient, contact, treatment, amount, days since issue, status, reminder ages in days)
        invoices = [
            ('Sam Carter', '+447700900001', 'Anti-wrinkle (3 areas)', '250.00', 10, 'sent', [10]),
            ('Priya Shah', '+447700900002', 'Lip filler 1ml', '220.00', 5, 'sent', [5]),
            ('Tom Reid', 'tom.reid@example.com', 'Skin booster', '180.00', 20, 'sent', [20, 13]),
            ('Lena Novak', '+447700900004', 'Lip filler 1ml', '220.00', 45, 'overdue', [45, 38, 31, 15]),
            ('Omar Haddad', '+447700900005', 'Skin booster', '180.00', 2, 'draft', []),
        ]
        for number, (patient_name, contact, treatment, amount, age, status, reminder_ages) in enumerate(invoices, 1):
            patient = Patient(id=str(uuid.uuid4()), user_id=user.id, name=patient_name,
                              phone=None if '@' in contact else contact,
                              email=contact if '@' in contact else None)
            db.session.add(patient)
            db.session.add(TreatmentEntry(id=str(uuid.uuid4()), user_id=user.id, patient_id=patient.id,
                                          treatment_name=treatment, price_paid=Decimal(amount),
                                          date=today - timedelta(days=age)))
            invoice = Invoice(
                id=str(uuid.uuid4()),
                user_id=user.id,
                invoice_number=f"INV-{today.year}-{number:04d}",
                patient_name=patient_name,
                patient_contact=contact,
                practitioner_name=practitioner.name,
                treatment_name=treatment,
                treatment_date=today - timedelta(days=age),
                amount=Decimal(amount),
                issue_date=today - timedelta(days=age),
                status=status,
            )
            db.session.add(invoice)
            for index, reminder_age in enumerate(reminder_ages):
                db.session.add(PaymentReminder(
                    id=str(uuid.uuid4()),
                    invoice_id=invoice.id,
                    patient_phone=contact,
                    reminder_type='initial' if index == 0 else 'followup',
                    message_sent='Seeded reminder',
                    sent_at=now - timedelta(days=reminder_age),
                ))

        db.session.add(Expense(id=str(uuid.uuid4()), user_id=user.id, category='Stock',
                               amount=Decimal('420.00'), date=today - timedelta(days=3), notes='Filler restock'))
        db.session.commit()
        click.echo("Seeded demo clinic (login: demo@clinic.test / demo123)")

@cli.command('run-followups')
def run_followups():
    """Run the payment follow-up pass once"""
    with app.app_context():
        results = app.extensions['clinic_services'].followup_scheduler().run()
        click.echo(json.dumps(results, indent=2))

@cli.command()
def status():
    """Show database status"""
    with app.app_context():
        counts = {
            'Users': User.query.count(),
            'Profiles': Profile.query.count(),
            'Patients': Patient.query.count(),
            'Invoices': Invoice.query.count(),
            'Payment reminders': PaymentReminder.query.count(),
            'Subscriptions': Subscription.query.count(),
            'Exports': ExportHistory.query.count(),
        }

        click.echo("Database connection: OK")
        click.echo("\nRecord counts:")
        for table, count in counts.items():
            click.echo(f"  {table}: {count}")

        click.echo("\nInvoices by status:")
        for invoice_status in INVOICE_STATUSES:
            click.echo(f"  {invoice_status}: {Invoice.query.filter_by(status=invoice_status).count()}")

if __name__ == '__main__':
    cli()
