from .interfaces import ABORT, SERVER_TIMESTAMP, RecordStoreProtocol, Subscription, TransactionResult
from .sqlite import PollingSubscription, SQLiteRecordStore

__all__ = [
    "ABORT",
    "SERVER_TIMESTAMP",
    "PollingSubscription",
    "RecordStoreProtocol",
    "SQLiteRecordStore",
    "Subscription",
    "TransactionResult",
]
