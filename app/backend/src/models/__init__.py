"""ORM models exposed for easy imports."""

from .batch_upload import BatchUpload, BatchUploadItem
from .case import Case
from .contribution import Contribution
from .notification import Notification
from .payment_method import PaymentMethod
from .user import User

__all__ = [
    "BatchUpload",
    "BatchUploadItem",
    "Case",
    "Contribution",
    "Notification",
    "PaymentMethod",
    "User",
]
