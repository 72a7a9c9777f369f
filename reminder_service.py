import logging
import uuid
from datetime import datetime, timedelta, time
from sqlalchemy import update, or_
from sqlalchemy.exc import SQLAlchemyError
from models import db, Invoice, PaymentReminder, Profile
from message_templates import followup_sms
from errors import ClinicError, ConfigurationError

logger = logging.getLogger(__name__)

OPEN_STATUSES = ('sent', 'overdue')
DUPLICATE_WINDOW = timedelta(days=1)
OVERDUE_AFTER_DAYS = 14


class FollowupScheduler:
    """Sends staggered overdue-payment SMS follow-ups.

    One call to :meth:`run` walks every unpaid invoice once and sends at most
    one follow-up per invoice. Which follow-up is due is derived from the
    reminders already logged for the invoice: with ``n`` reminders on record
    follow-up ``n - 1`` is next, and it becomes eligible ``intervals[n - 1]``
    days after the issue date.

    Concurrent runs are kept apart by a conditional update on
    ``Invoice.followup_claimed_at``; only the run whose update matches a row
    may send for that invoice.
    """

    def __init__(self, config, sms_sender, clock=None):
        if sms_sender is None:
            raise ConfigurationError('Twilio credentials not configured')
        config.validate()
        self.config = config
        self.sms_sender = sms_sender
        self.clock = clock or datetime.utcnow

    def run(self):
        now = self.clock()
        # Store failures here are fatal for the whole run
        invoices = Invoice.query.filter(Invoice.status.in_(OPEN_STATUSES)).all()

        results = {'processed': 0, 'sent': 0, 'skipped': 0, 'errors': []}
        if not invoices:
            results['message'] = 'No invoices need follow-ups'
            return results

        for invoice in invoices:
            results['processed'] += 1
            try:
                outcome = self._process_invoice(invoice, now)
            except (ClinicError, SQLAlchemyError) as e:
                db.session.rollback()
                message = e.message if isinstance(e, ClinicError) else str(e)
                logger.warning("Follow-up for invoice %s failed: %s", invoice.id, message)
                results['errors'].append(f"Invoice {invoice.id}: {message}")
                continue

            results[outcome] += 1

        logger.info("Follow-up run: processed=%d sent=%d skipped=%d errors=%d",
                    results['processed'], results['sent'], results['skipped'], len(results['errors']))
        return results

    def _process_invoice(self, invoice, now):
        """Returns ``'sent'`` or ``'skipped'``; raises ClinicError for per-invoice failures."""
        reminders = list(invoice.reminders)
        reminder_count = len(reminders)

        # +1 for the initial reminder
        if reminder_count >= self.config.max_followups + 1:
            return 'skipped'

        followup_index = reminder_count - 1
        if followup_index < 0 or followup_index >= len(self.config.intervals):
            return 'skipped'

        if days_since_issue(invoice, now) < self.config.intervals[followup_index]:
            return 'skipped'

        last_reminder = reminders[0]
        if now - last_reminder.sent_at < DUPLICATE_WINDOW:
            return 'skipped'

        if not invoice.patient_contact:
            raise ClinicError('No patient contact')

        profile = db.session.get(Profile, invoice.user_id)
        if profile is None:
            raise ClinicError('Profile not found')

        previous_claim = invoice.followup_claimed_at
        if not self._claim(invoice, now):
            return 'skipped'

        message = followup_sms(invoice, profile)
        try:
            self.sms_sender.send(invoice.patient_contact, message)
        except ClinicError:
            self._release(invoice, now, previous_claim)
            raise

        db.session.add(PaymentReminder(
            id=str(uuid.uuid4()),
            invoice_id=invoice.id,
            patient_phone=invoice.patient_contact,
            reminder_type='followup',
            message_sent=message,
            sent_at=now,
        ))

        days_since_last_reminder = (now - last_reminder.sent_at).days
        if days_since_last_reminder > OVERDUE_AFTER_DAYS and invoice.status != 'overdue':
            invoice.status = 'overdue'

        db.session.commit()
        return 'sent'

    def _claim(self, invoice, now):
        result = db.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id)
            .where(or_(Invoice.followup_claimed_at.is_(None),
                       Invoice.followup_claimed_at <= now - DUPLICATE_WINDOW))
            .values(followup_claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        if result.rowcount == 0:
            logger.info("Invoice %s is claimed by another follow-up run", invoice.id)
            return False
        return True

    def _release(self, invoice, now, previous_claim):
        db.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id)
            .where(Invoice.followup_claimed_at == now)
            .values(followup_claimed_at=previous_claim)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()


def days_since_issue(invoice, now):
    issued = datetime.combine(invoice.issue_date, time.min)
    return (now - issued).days
