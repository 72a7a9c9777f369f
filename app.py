import logging
import os
import uuid
from datetime import datetime
from flask import Flask, request, jsonify, send_file, current_app
from flask_cors import CORS
from flask_jwt_extended import JWTManager, jwt_required, create_access_token, get_jwt_identity
from sqlalchemy.exc import SQLAlchemyError
from config import Settings
from errors import ClinicError, AuthError, ValidationError, NotFoundError
from models import db, User, Profile, Invoice
from services import Services
import invoice_service
import invoice_documents

logger = logging.getLogger(__name__)


def create_response(data=None, error=None, status=200):
    if error is not None:
        return jsonify({'error': error}), status
    return jsonify(data if data is not None else {}), status


def services():
    return current_app.extensions['clinic_services']


def current_user():
    user = db.session.get(User, get_jwt_identity())
    if not user:
        raise AuthError('User not authenticated')
    return user


def request_json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON body')
    return data


def create_app(settings=None, **service_overrides):
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )

    app = Flask(__name__)
    app.config.update(settings.flask_config())
    app.extensions['clinic_services'] = Services(settings, **service_overrides)

    db.init_app(app)
    jwt = JWTManager(app)
    CORS(app, send_wildcard=True, allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type', 'x-cron-secret'])

    @jwt.unauthorized_loader
    def missing_token(reason):
        return create_response(error='No authorization header', status=401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return create_response(error=f'Invalid token: {reason}', status=401)

    @jwt.expired_token_loader
    def expired_token(header, payload):
        return create_response(error='Session expired. Please sign in again.', status=401)

    @app.errorhandler(ClinicError)
    def handle_clinic_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        return create_response(error=e.message, status=e.status_code)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        logger.exception("Database error on %s %s", request.method, request.path)
        return create_response(error=f'Database error: {e.__class__.__name__}', status=500)

    register_routes(app)
    return app


def register_routes(app):

    # Authentication
    @app.route('/api/auth/register', methods=['POST'])
    def register():
        data = request_json()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password')
        if not email or not password:
            raise ValidationError('Email and password are required')
        if User.query.filter_by(email=email).first():
            raise ValidationError('Email already exists')

        user = User(id=str(uuid.uuid4()), email=email, full_name=data.get('full_name'))
        user.set_password(password)
        db.session.add(user)
        db.session.add(Profile(id=user.id, full_name=data.get('full_name'), clinic_name=data.get('clinic_name')))
        db.session.commit()
        return create_response(data={'token': create_access_token(identity=user.id), 'userId': user.id}, status=201)

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = request_json()
        email = (data.get('email') or '').strip().lower()
        password = data.get('password')
        if not email or not password:
            raise ValidationError('Email and password are required')

        user = User.query.filter_by(email=email).first()
        if not user or not user.check_password(password):
            raise AuthError('Invalid email or password')
        return create_response(data={'token': create_access_token(identity=user.id), 'userId': user.id})

    @app.route('/api/auth/me', methods=['GET'])
    @jwt_required()
    def me():
        user = current_user()
        profile = user.profile
        merged = {
            'id': user.id,
            'email': user.email,
            'full_name': (profile.full_name if profile else None) or user.full_name or '',
            'clinic_name': '',
            'bank_name': '',
            'account_number': '',
            'sort_code': '',
        }
        if profile:
            merged.update({key: value for key, value in profile.to_dict().items() if value is not None})
        return create_response(data=merged)

    @app.route('/api/auth/me', methods=['PUT'])
    @jwt_required()
    def update_me():
        user = current_user()
        data = request_json()
        profile = user.profile
        if profile is None:
            profile = Profile(id=user.id)
            db.session.add(profile)

        for field in Profile.EDITABLE_FIELDS:
            if field in data:
                setattr(profile, field, data[field])
        profile.updated_at = datetime.utcnow()
        db.session.commit()
        return create_response(data={'id': user.id, 'email': user.email, **profile.to_dict()})

    # Invoice notifications
    @app.route('/api/functions/send-payment-reminder', methods=['POST'])
    @jwt_required()
    def send_payment_reminder():
        user = current_user()
        data = request_json()
        result = invoice_service.send_payment_reminder(
            services(), user.id, data.get('invoiceId'), include_review=bool(data.get('includeReview')))
        return create_response(data=result)

    @app.route('/api/functions/send-invoice', methods=['POST'])
    @jwt_required()
    def send_invoice():
        user = current_user()
        data = request_json()
        result = invoice_service.send_invoice(services(), user.id, data.get('invoiceId'), data.get('sendVia'))
        return create_response(data=result)

    @app.route('/api/functions/check-and-send-followups', methods=['POST'])
    def check_and_send_followups():
        cron_secret = services().settings.cron_secret
        if cron_secret and request.headers.get('X-Cron-Secret') != cron_secret:
            raise AuthError('Invalid cron secret')

        results = services().followup_scheduler().run()
        return create_response(data={'success': True, **results})

    # Invoice documents
    @app.route('/api/functions/generate-invoice-pdf', methods=['POST'])
    @jwt_required()
    def generate_invoice_pdf():
        user = current_user()
        data = request_json()
        invoice = invoice_service.get_owned_invoice(user.id, data.get('invoiceId'))
        url = invoice_documents.generate_invoice_pdf(services().settings, invoice)
        return create_response(data={'success': True, 'url': url})

    @app.route('/api/invoices/<invoice_id>/pdf', methods=['GET'])
    def download_invoice_pdf(invoice_id):
        invoice = db.session.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError('Invoice not found')
        path = invoice_documents.pdf_path(services().settings, invoice)
        if not invoice.invoice_pdf_url or not os.path.exists(path):
            raise NotFoundError('Invoice PDF has not been generated')
        return send_file(path, mimetype='application/pdf', download_name=invoice_documents.pdf_filename(invoice))

    @app.route('/api/invoices/export', methods=['GET'])
    @jwt_required()
    def export_invoices():
        user = current_user()
        output, filename = invoice_documents.export_invoices(user.id)
        return send_file(output, mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
                         as_attachment=True, download_name=filename)

    # Billing
    @app.route('/api/functions/create-checkout-session', methods=['POST'])
    @jwt_required()
    def create_checkout_session():
        user = current_user()
        data = request_json()
        return create_response(data=services().billing().create_checkout_session(user, data.get('priceId')))

    @app.route('/api/functions/stripe-webhook', methods=['POST'])
    def stripe_webhook():
        result = services().billing().handle_webhook(request.get_data(), request.headers.get('Stripe-Signature'))
        return create_response(data=result)

    @app.route('/api/functions/sync-checkout-session', methods=['POST'])
    @jwt_required()
    def sync_checkout_session():
        user = current_user()
        data = request.get_json(silent=True) or {}
        return create_response(data=services().billing().sync_checkout_session(user.id, data.get('session_id')))

    @app.route('/api/subscription', methods=['GET'])
    @jwt_required()
    def get_subscription():
        user = current_user()
        billing = services().billing()
        return create_response(data={
            'subscription': billing.get_subscription(user.id),
            'active': billing.has_active_subscription(user.id),
        })

    # AI consultant
    @app.route('/api/functions/openai-consultant', methods=['POST'])
    @jwt_required()
    def openai_consultant():
        user = current_user()
        data = request_json()
        result = services().consultant().consult(user.id, data.get('userMessage'), data.get('clinicContext'))
        return create_response(data=result)


app = create_app()

if __name__ == '__main__':
    app.run(debug=True)
