"""
Week letters - periods, the content store and retry bookkeeping.
"""

from weekletter.letters.models import RetryRecord, StoredDocument
from weekletter.letters.repository import DocumentRepository
from weekletter.letters.retries import RetryTracker
from weekletter.letters.types import Document, DocumentOrigin, FetchResult, FetchStatus, Period

__all__ = [
    "Document",
    "DocumentOrigin",
    "DocumentRepository",
    "FetchResult",
    "FetchStatus",
    "Period",
    "RetryRecord",
    "RetryTracker",
    "StoredDocument",
]
