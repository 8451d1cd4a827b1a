from app.models.credit_balance import CreditBalance, Currency
from app.models.credit_transaction import CreditTransaction
from app.models.notification import Notification
from app.models.owner import Owner
from app.models.queue_entry import QueueEntry

__all__ = [
    "CreditBalance",
    "CreditTransaction",
    "Currency",
    "Notification",
    "Owner",
    "QueueEntry",
]
