class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class NotificationError(BaseServiceError):
    """Base exception for notification processing errors."""
    pass

class MalformedPayloadError(NotificationError):
    """Raised when a payload is missing required identifying fields."""
    pass

class UnknownReferenceError(NotificationError):
    """Raised when a seller, subscription or report cannot be resolved."""
    pass

class UnsupportedNotificationTypeError(NotificationError):
    """Raised when no handler exists for a notification type."""
    pass

class TransientDependencyError(BaseServiceError):
    """Raised when an upstream dependency is unavailable; retry later."""
    pass

class ReconciliationInvariantError(BaseServiceError):
    """Raised when a reconciliation pass would persist inconsistent offers."""
    pass

class QueueTransportError(BaseServiceError):
    """Raised when a queue API call fails."""
    pass
