import base64
import logging
import requests
from errors import ProviderError

logger = logging.getLogger(__name__)

RESEND_URL = 'https://api.resend.com/emails'


class EmailSender:
    """Anything that can deliver one email."""

    configured = True

    def send_email(self, to_email, subject, html, attachments=None):
        raise NotImplementedError


class EmailService(EmailSender):
    """Resend client. Without an API key every send is a reported no-op."""

    def __init__(self, api_key=None, from_email='invoices@resend.dev', timeout=15):
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings):
        return cls(api_key=settings.resend_api_key, from_email=settings.from_email)

    @property
    def configured(self):
        return bool(self.api_key)

    def send_email(self, to_email, subject, html, attachments=None):
        """Send an HTML email. ``attachments`` is a list of ``(filename, bytes)``."""
        payload = {
            'from': self.from_email,
            'to': to_email,
            'subject': subject,
            'html': html,
        }
        if attachments:
            payload['attachments'] = [
                {'filename': filename, 'content': base64.b64encode(content).decode('ascii')}
                for filename, content in attachments
            ]

        try:
            response = requests.post(
                RESEND_URL,
                json=payload,
                headers={'Authorization': f'Bearer {self.api_key}'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f'Email failed: {e}')

        if not response.ok:
            logger.warning("Resend rejected email to %s: %s", to_email, response.text)
            raise ProviderError(f'Email failed: {response.text}')

        logger.info("Email '%s' sent to %s", subject, to_email)
        return response.json().get('id')
