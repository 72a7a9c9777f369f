class ClinicError(Exception):
    """Base error; ``status_code`` is what the API answers with."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ClinicError):
    status_code = 500


class ValidationError(ClinicError):
    status_code = 400


class AuthError(ClinicError):
    status_code = 401


class ForbiddenError(ClinicError):
    status_code = 403


class NotFoundError(ClinicError):
    status_code = 404


class ProviderError(ClinicError):
    """An external provider (SMS, email, billing, chat) rejected a call."""

    status_code = 502
