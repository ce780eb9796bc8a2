from app.models.transaction import TransactionRecord
from app.models.event import TransactionEventRecord

__all__ = ["TransactionRecord", "TransactionEventRecord"]
