from sms_service import TwilioSmsSender
from email_service import EmailService
from billing_service import BillingService
from consultant_service import ConsultantService
from reminder_service import FollowupScheduler


class Services:
    """Provider clients for one app, built on first use.

    Anything passed in explicitly (a fake SMS sender in tests, say) is used as
    is; everything else is built from ``settings`` and may raise
    ConfigurationError when its credentials are missing.
    """

    def __init__(self, settings, sms_sender=None, email_service=None, consultant=None, clock=None):
        self.settings = settings
        self._sms = sms_sender
        self._email = email_service
        self._consultant = consultant
        self._billing = None
        self.clock = clock

    def sms(self):
        if self._sms is None:
            self._sms = TwilioSmsSender.from_settings(self.settings)
        return self._sms

    def email(self):
        if self._email is None:
            self._email = EmailService.from_settings(self.settings)
        return self._email

    def billing(self):
        if self._billing is None:
            self._billing = BillingService(self.settings)
        return self._billing

    def consultant(self):
        if self._consultant is None:
            self._consultant = ConsultantService(self.settings)
        return self._consultant

    def followup_scheduler(self):
        return FollowupScheduler(self.settings.followup, self.sms(), clock=self.clock)
