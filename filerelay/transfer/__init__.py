# Transfer Manager
# Owns transfer request state, issues requests, reassembles chunks to disk

from filerelay.transfer.request import TransferRequest, TransferStatus
from filerelay.transfer.manager import TransferManager

__all__ = [
    "TransferRequest",
    "TransferStatus",
    "TransferManager",
]
