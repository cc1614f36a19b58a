"""Domain exceptions."""


class MoaiError(Exception):
    """Base class for errors raised by the delivery backend."""


class DocumentNotFoundError(MoaiError):
    """A document was expected in the store but is missing."""

    def __init__(self, collection: str, document_id: str):
        super().__init__(f"{collection}/{document_id} not found")
        self.collection = collection
        self.document_id = document_id


class DocumentValidationError(MoaiError):
    """A stored payload does not match its document type."""

    def __init__(self, collection: str, document_id: str, details: str):
        super().__init__(f"{collection}/{document_id} failed validation: {details}")
        self.collection = collection
        self.document_id = document_id
        self.details = details


class InvalidTransitionError(MoaiError):
    """An order status change breaks the lifecycle ordering."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from {current} to {requested}")
        self.current = current
        self.requested = requested


class GeolocationError(MoaiError):
    """A position sample could not be obtained."""


class GeocodingError(MoaiError):
    """An address could not be resolved to coordinates."""


class PaymentGatewayError(MoaiError):
    """The payment gateway rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotificationError(MoaiError):
    """A notification transport failed to deliver."""


class EmailDeliveryError(MoaiError):
    """An email could not be sent."""
