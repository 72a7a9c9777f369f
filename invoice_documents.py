import os
import uuid
from io import BytesIO
from datetime import datetime
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from sqlalchemy import func
from models import db, Invoice, PaymentReminder, Profile, ExportHistory
from message_templates import clinic_name, bank_details, format_amount


def pdf_filename(invoice):
    return f"Invoice-{str(invoice.invoice_number).replace('/', '-')}.pdf"


def pdf_path(settings, invoice):
    return os.path.join(os.path.abspath(settings.invoice_pdf_dir), f"{invoice.id}.pdf")


def read_invoice_pdf(settings, invoice):
    """Bytes of the stored PDF, or None if it was never generated."""
    path = pdf_path(settings, invoice)
    if not invoice.invoice_pdf_url or not os.path.exists(path):
        return None
    with open(path, 'rb') as f:
        return f.read()


def render_invoice_pdf(invoice, profile):
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    W, H = A4
    M = 50  # margin
    y = H - M

    c.setFont("Helvetica-Bold", 22)
    c.drawString(M, y, clinic_name(profile))
    y -= 28
    c.setFont("Helvetica-Bold", 18)
    c.drawString(M, y, "INVOICE")
    y -= 24

    c.setFont("Helvetica", 12)
    lines = [
        f"Invoice Number: {invoice.invoice_number}",
        f"Issue Date: {invoice.issue_date.strftime('%d/%m/%Y')}",
        f"Patient: {invoice.patient_name or ''}",
    ]
    if invoice.patient_contact:
        lines.append(f"Contact: {invoice.patient_contact}")
    if invoice.practitioner_name:
        lines.append(f"Practitioner: {invoice.practitioner_name}")
    for line in lines:
        c.drawString(M, y, line)
        y -= 16
    y -= 12

    # single treatment line
    c.setFont("Helvetica-Bold", 12)
    c.drawString(M, y, "Description")
    c.drawString(320, y, "Date")
    c.drawString(480, y, "Amount")
    y -= 14
    c.line(M, y, W - M, y)
    y -= 16
    c.setFont("Helvetica", 12)
    c.drawString(M, y, invoice.treatment_name or "Treatment")
    c.drawString(320, y, invoice.treatment_date.strftime('%d/%m/%Y') if invoice.treatment_date else "")
    c.drawString(480, y, format_amount(invoice.amount))
    y -= 20

    c.setFont("Helvetica-Bold", 14)
    c.drawString(M, y, "Total")
    c.drawString(480, y, format_amount(invoice.amount))
    y -= 24

    details = bank_details(profile)
    if details:
        c.setFont("Helvetica-Bold", 12)
        c.drawString(M, y, "Bank transfer details:")
        y -= 16
        c.setFont("Helvetica", 12)
        c.drawString(M, y, details)
        y -= 20

    if invoice.notes:
        c.setFont("Helvetica-Bold", 12)
        c.drawString(M, y, "Notes:")
        y -= 16
        c.setFont("Helvetica", 12)
        for line in invoice.notes.split("\n")[:5]:
            c.drawString(M, y, line[:80])
            y -= 16

    c.showPage()
    c.save()
    pdf = buf.getvalue()
    buf.close()
    return pdf


def generate_invoice_pdf(settings, invoice):
    """Render, store, and link the invoice PDF; returns the public URL."""
    profile = db.session.get(Profile, invoice.user_id)
    pdf = render_invoice_pdf(invoice, profile)

    os.makedirs(settings.invoice_pdf_dir, exist_ok=True)
    with open(pdf_path(settings, invoice), 'wb') as f:
        f.write(pdf)

    invoice.invoice_pdf_url = f"{settings.public_base_url.rstrip('/')}/api/invoices/{invoice.id}/pdf"
    db.session.commit()
    return invoice.invoice_pdf_url


def export_invoices(user_id):
    """Workbook of the user's invoices with reminder counts; logs the export."""
    reminder_counts = dict(
        db.session.query(PaymentReminder.invoice_id, func.count(PaymentReminder.id))
        .join(Invoice, PaymentReminder.invoice_id == Invoice.id)
        .filter(Invoice.user_id == user_id)
        .group_by(PaymentReminder.invoice_id)
        .all()
    )
    invoices = Invoice.query.filter_by(user_id=user_id).order_by(Invoice.issue_date.desc()).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "Invoices"

    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    header_font = Font(bold=True, color="FFFFFF")

    headers = ['Invoice Number', 'Patient', 'Treatment', 'Amount', 'Issue Date', 'Status', 'Reminders Sent']
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal='center')

    for row, invoice in enumerate(invoices, 2):
        ws.cell(row=row, column=1, value=invoice.invoice_number)
        ws.cell(row=row, column=2, value=invoice.patient_name or "N/A")
        ws.cell(row=row, column=3, value=invoice.treatment_name or "N/A")
        ws.cell(row=row, column=4, value=float(invoice.amount))
        ws.cell(row=row, column=5, value=invoice.issue_date.isoformat())
        ws.cell(row=row, column=6, value=invoice.status)
        ws.cell(row=row, column=7, value=reminder_counts.get(invoice.id, 0))

    for column in ws.columns:
        max_length = 0
        column_letter = column[0].column_letter
        for cell in column:
            if cell.value:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)

    output = BytesIO()
    wb.save(output)
    output.seek(0)

    filename = f'invoices_{datetime.now().strftime("%Y%m%d_%H%M%S")}.xlsx'
    db.session.add(ExportHistory(
        id=str(uuid.uuid4()),
        user_id=user_id,
        export_type='invoices',
        filename=filename,
        record_count=len(invoices),
    ))
    db.session.commit()
    return output, filename
