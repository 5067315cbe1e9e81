"""SQLAlchemy ORM models."""

from .account import Account
from .api_call_log import ApiCallLog
from .balance import Balance
from .download_log import DownloadLog
from .institution_connection import InstitutionConnection
from .manual_sync_request import ManualSyncRequest
from .transaction import Transaction
from .utils import generate_uuid

__all__ = ["Account", "ApiCallLog", "Balance", "DownloadLog", "InstitutionConnection", "ManualSyncRequest", "Transaction", "generate_uuid"]
