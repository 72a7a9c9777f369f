"""Text and HTML bodies sent to patients.

Everything here is pure: it takes an invoice and (optionally) the clinic's
profile and returns strings.
"""

from html import escape

DEFAULT_CLINIC_NAME = 'Our Clinic'


def clinic_name(profile):
    return (profile.clinic_name if profile else None) or DEFAULT_CLINIC_NAME


def bank_details(profile):
    return profile.bank_details() if profile else None


def format_amount(amount):
    return f"£{amount:.2f}"


def followup_sms(invoice, profile):
    message = f"Reminder: Payment due from {clinic_name(profile)}. "
    message += f"Invoice {invoice.invoice_number}: {format_amount(invoice.amount)} "

    details = bank_details(profile)
    if details:
        message += f"Please pay to {details}."
    else:
        message += "Please make payment."
    return message


def payment_reminder_sms(invoice, profile, include_review=False):
    message = f"Thank you for visiting {clinic_name(profile)} today. "
    message += f"Please send {format_amount(invoice.amount)} "

    details = bank_details(profile)
    if details:
        message += f"to {details}."
    else:
        message += "(payment details in invoice)."

    if include_review:
        message += " We'd love your feedback!"
    return message


def invoice_sms(invoice, profile):
    treatment = invoice.treatment_name or 'your treatment'
    message = f"Thanks for visiting and having {treatment}. "
    message += "Please find your invoice below. We hope to see you soon!\n\n"
    message += f"Invoice {invoice.invoice_number} from {clinic_name(profile)}\n"
    message += f"Amount: {format_amount(invoice.amount)}\n"
    if invoice.invoice_pdf_url:
        message += f"View & download: {invoice.invoice_pdf_url}"
    return message


def invoice_email_subject(invoice, profile):
    return f"Your invoice from {clinic_name(profile)} - {invoice.invoice_number}"


def invoice_email_html(invoice, profile):
    treatment = escape(invoice.treatment_name or 'your treatment')
    pdf_link = ''
    if invoice.invoice_pdf_url:
        pdf_link = f'<p><a href="{escape(invoice.invoice_pdf_url)}">View and download your PDF invoice</a></p>'

    return f"""
<p>Dear {escape(invoice.patient_name or 'patient')},</p>
<p>Thanks for visiting and having <strong>{treatment}</strong>. Please find your invoice attached.</p>
<p>We hope to see you soon!</p>
<p><strong>Invoice Number:</strong> {escape(invoice.invoice_number)}<br/>
<strong>Amount:</strong> {format_amount(invoice.amount)}</p>
{pdf_link}
<p>Best regards,<br/>{escape(clinic_name(profile))}</p>
""".strip()
