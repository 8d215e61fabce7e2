from __future__ import annotations


class BillingError(Exception):
    """Base class for conditions the caller can correct and retry."""

    status_code = 400
    default_message = 'Request could not be processed.'

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = {key: value for key, value in context.items() if value is not None}
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {'detail': self.message}
        payload.update({key: str(value) for key, value in self.context.items()})
        return payload


class ValidationError(BillingError):
    status_code = 400
    default_message = 'Invalid input.'

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}", field=field)


class NotFoundError(BillingError):
    status_code = 404
    default_message = 'Not found.'

    def __init__(self, resource: str, resource_id=None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found or access denied.", id=resource_id)


class ConflictError(BillingError):
    status_code = 409
    default_message = 'Conflict.'

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, field=field)


class AuthorizationError(BillingError):
    status_code = 403
    default_message = 'You do not have permission to perform this action.'
