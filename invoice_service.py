import logging
import uuid
from models import db, Invoice, PaymentReminder, Profile
from message_templates import payment_reminder_sms, invoice_sms, invoice_email_subject, invoice_email_html
from errors import ClinicError, NotFoundError, ValidationError, ProviderError
import invoice_documents

logger = logging.getLogger(__name__)

SEND_CHANNELS = ('sms', 'email', 'both')


def get_owned_invoice(user_id, invoice_id):
    if not invoice_id:
        raise ValidationError('Invoice ID is required')
    invoice = Invoice.query.filter_by(id=invoice_id, user_id=user_id).first()
    if not invoice:
        raise NotFoundError('Invoice not found')
    return invoice


def send_payment_reminder(services, user_id, invoice_id, include_review=False):
    """Initial payment reminder: one SMS, logged as the ``initial`` reminder."""
    invoice = get_owned_invoice(user_id, invoice_id)

    profile = db.session.get(Profile, user_id)
    if profile is None:
        raise NotFoundError('Profile not found')

    message = payment_reminder_sms(invoice, profile, include_review=include_review)

    if not invoice.patient_contact:
        raise ValidationError('Patient phone number not found')

    services.sms().send(invoice.patient_contact, message)

    db.session.add(PaymentReminder(
        id=str(uuid.uuid4()),
        invoice_id=invoice.id,
        patient_phone=invoice.patient_contact,
        reminder_type='initial',
        message_sent=message,
    ))
    invoice.status = 'sent'
    db.session.commit()

    logger.info("Initial reminder sent for invoice %s", invoice.id)
    return {'success': True, 'message': 'Payment reminder sent'}


def send_invoice(services, user_id, invoice_id, send_via):
    """Send an invoice by SMS, email, or both.

    Channels are independent; the invoice is marked ``sent`` when at least one
    of them delivered. If every attempted channel failed the collected errors
    are raised.
    """
    if not invoice_id or not send_via:
        raise ValidationError('Invoice ID and send method are required')
    if send_via not in SEND_CHANNELS:
        raise ValidationError(f"sendVia must be one of: {', '.join(SEND_CHANNELS)}")

    invoice = get_owned_invoice(user_id, invoice_id)
    profile = db.session.get(Profile, user_id)

    results = {}
    if send_via in ('sms', 'both'):
        results['sms'] = _send_sms_channel(services, invoice, profile)
    if send_via in ('email', 'both'):
        results['email'] = _send_email_channel(services, invoice, profile)

    delivered = any(channel['success'] for channel in results.values())
    errors = [f"{name}: {channel['error']}" for name, channel in results.items() if channel.get('error')]

    if delivered:
        invoice.status = 'sent'
        db.session.commit()
        return {'success': True, 'results': results}

    if errors:
        raise ProviderError('; '.join(errors))
    return {'success': False, 'results': results}


def _send_sms_channel(services, invoice, profile):
    if not invoice.patient_contact:
        return {'success': False, 'error': 'Patient phone number not found'}
    sender = services.sms()
    try:
        sender.send(invoice.patient_contact, invoice_sms(invoice, profile))
    except ClinicError as e:
        return {'success': False, 'error': e.message}
    return {'success': True}


def _send_email_channel(services, invoice, profile):
    contact = invoice.patient_contact or ''
    if '@' not in contact:
        return {'success': False, 'applicable': False, 'note': 'Patient contact is not an email address'}

    email = services.email()
    if not email.configured:
        return {'success': False, 'note': 'Set RESEND_API_KEY (and optional FROM_EMAIL) to send email'}

    attachments = []
    pdf = invoice_documents.read_invoice_pdf(services.settings, invoice)
    if pdf is not None:
        attachments.append((invoice_documents.pdf_filename(invoice), pdf))

    try:
        email.send_email(
            contact,
            invoice_email_subject(invoice, profile),
            invoice_email_html(invoice, profile),
            attachments=attachments,
        )
    except ClinicError as e:
        return {'success': False, 'error': e.message}
    return {'success': True}
