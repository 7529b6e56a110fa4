"""
Core module exports.
"""
from .enums import (
    FulfillmentChannel,
    NotificationType,
    NotificationStatus,
    BuyboxEvent,
    DispatchOutcomeKind,
)

from .exceptions import (
    BaseServiceError,
    NotificationError,
    MalformedPayloadError,
    UnknownReferenceError,
    UnsupportedNotificationTypeError,
    TransientDependencyError,
    ReconciliationInvariantError,
    QueueTransportError,
)
