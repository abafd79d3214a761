"""
Registration Service — error taxonomy
Every failure the core reports to a direct API caller is a RegistrationError.
The webhook blueprint absorbs all of them into the provider acknowledgment.
"""


class RegistrationError(Exception):
    error_code = "REGISTRATION_ERROR"
    status_code = 400

    def __init__(self, message=None, **details):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()
        self.details = details

    def default_message(self):
        return "The request could not be completed."

    def to_dict(self):
        body = {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
        }
        body.update(self.details)
        return body


class NotFound(RegistrationError):
    error_code = "NOT_FOUND"
    status_code = 404

    def default_message(self):
        return "The requested resource could not be found."


class ValidationFailed(RegistrationError):
    error_code = "VALIDATION_FAILED"
    status_code = 400


class InvalidParticipationType(RegistrationError):
    error_code = "INVALID_PARTICIPATION_TYPE"
    status_code = 400

    def default_message(self):
        return "Invalid participation type."


class RegistrationClosed(RegistrationError):
    error_code = "REGISTRATION_CLOSED"
    status_code = 400

    def default_message(self):
        return "Registration is closed for this event."


class DuplicateRegistration(RegistrationError):
    error_code = "DUPLICATE_REGISTRATION"
    status_code = 409

    def default_message(self):
        return "You have already registered for this event with this email address."


class PaymentNotCompleted(RegistrationError):
    error_code = "PAYMENT_NOT_COMPLETED"
    status_code = 400

    def default_message(self):
        return "Payment not completed for this registration."


class InvalidCredential(RegistrationError):
    # Raised only by the scan adapter; CredentialIssuer.verify is a predicate.
    error_code = "INVALID_CREDENTIAL"
    status_code = 400

    def default_message(self):
        return "The scanned code is not a valid credential."


class CollaboratorFailure(RegistrationError):
    """A payment, storage, rasterization or email call failed or timed out."""

    error_code = "COLLABORATOR_FAILURE"
    status_code = 502

    def default_message(self):
        return "An upstream service is unavailable. Please retry."
