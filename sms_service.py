import logging
import requests
from twilio.rest import Client
from twilio.base.exceptions import TwilioException, TwilioRestException
from errors import ProviderError

logger = logging.getLogger(__name__)


class SmsSender:
    """Anything that can deliver one text message."""

    def send(self, to_number, body):
        raise NotImplementedError


class TwilioSmsSender(SmsSender):
    def __init__(self, account_sid, auth_token, from_number, client=None):
        self.from_number = from_number
        self.client = client or Client(account_sid, auth_token)

    @classmethod
    def from_settings(cls, settings):
        settings.require_twilio()
        return cls(settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_phone_number)

    def send(self, to_number, body):
        """Send ``body`` to ``to_number``; returns the message SID."""
        try:
            message = self.client.messages.create(to=to_number, from_=self.from_number, body=body)
        except TwilioRestException as e:
            logger.warning("Twilio rejected message to %s: %s", to_number, e.msg)
            raise ProviderError(f"Twilio error - {e.msg}")
        except (TwilioException, requests.RequestException) as e:
            logger.warning("Could not reach Twilio for %s: %s", to_number, e)
            raise ProviderError(f"Twilio error - {e}")
        logger.info("SMS %s sent to %s", message.sid, to_number)
        return message.sid
