"""Core data models for the bank notification ingestion pipeline."""

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, Union


# The sender stamps every notification in Vietnam local time.
SENDER_TIMEZONE = timezone(timedelta(hours=7))


class TransactionField(str, Enum):
    """Logical fields carried by a transaction notification.

    The value is the field key used in configuration and lookups; the
    lower-cased member name is the matching ``ExtractedFields`` attribute.
    """
    RECEIVER_ACCOUNT = "taiKhoanNhan"
    SENDER_ACCOUNT = "taiKhoanChuyen"
    SENDER_NAME = "tenNguoiChuyen"
    SENDER_BANK = "nganHangChuyen"
    TRANSACTION_TYPE = "loaiGiaoDich"
    TRANSACTION_CODE = "maGiaoDich"
    TRANSACTION_TIME = "ngayGioGiaoDich"
    AMOUNT = "soTien"
    FEE = "phiGiaoDich"
    DESCRIPTION = "noiDungGiaoDich"

    @property
    def attribute(self) -> str:
        return self.name.lower()


REQUIRED_FIELDS = (
    TransactionField.RECEIVER_ACCOUNT,
    TransactionField.SENDER_ACCOUNT,
    TransactionField.TRANSACTION_CODE,
    TransactionField.AMOUNT,
)


DEFAULT_FIELD_LABELS: Dict[str, List[str]] = {
    TransactionField.RECEIVER_ACCOUNT.value: ['Tài khoản nhận', 'Tai khoan nhan'],
    TransactionField.SENDER_ACCOUNT.value: ['Tài khoản chuyển', 'Tai khoan chuyen'],
    TransactionField.SENDER_NAME.value: ['Tên người chuyển', 'Ten nguoi chuyen'],
    TransactionField.SENDER_BANK.value: ['Ngân hàng chuyển', 'Ngan hang chuyen'],
    TransactionField.TRANSACTION_TYPE.value: ['Loại giao dịch', 'Loai giao dich'],
    TransactionField.TRANSACTION_CODE.value: ['Mã giao dịch', 'Ma giao dich'],
    TransactionField.TRANSACTION_TIME.value: ['Ngày giờ giao dịch', 'Ngay gio giao dich'],
    TransactionField.AMOUNT.value: ['Số tiền', 'So tien'],
    TransactionField.FEE.value: ['Phí giao dịch', 'Phi giao dich'],
    TransactionField.DESCRIPTION.value: ['Nội dung giao dịch', 'Noi dung giao dich'],
}


DEFAULT_CONTENT_KEYWORDS = [
    'giao dịch',
    'chuyển tiền',
    'tài khoản',
    'số tiền',
    'ngân hàng',
    'transaction',
    'banking',
]


@dataclass
class ExtractedFields:
    """Raw text values found in one notification, one slot per known field.

    A slot is None when its label was not found in the document.
    """
    receiver_account: Optional[str] = None
    sender_account: Optional[str] = None
    sender_name: Optional[str] = None
    sender_bank: Optional[str] = None
    transaction_type: Optional[str] = None
    transaction_code: Optional[str] = None
    transaction_time: Optional[str] = None
    amount: Optional[str] = None
    fee: Optional[str] = None
    description: Optional[str] = None

    def __getitem__(self, key: Union[str, TransactionField]) -> Optional[str]:
        return getattr(self, TransactionField(key).attribute)

    def get(self, key: Union[str, TransactionField], default: Optional[str] = None) -> Optional[str]:
        value = self[key]
        return default if value is None else value

    def set(self, key: Union[str, TransactionField], value: Optional[str]) -> None:
        setattr(self, TransactionField(key).attribute, value)

    def is_set(self, key: Union[str, TransactionField]) -> bool:
        value = self[key]
        return value is not None and value.strip() != ''

    def missing(self, required: Optional[List[TransactionField]] = None) -> List[TransactionField]:
        """Return the required fields that are absent or blank"""
        required = REQUIRED_FIELDS if required is None else required
        return [f for f in required if not self.is_set(f)]

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {f.value: self[f] for f in TransactionField}


class DateTimeStatus(Enum):
    """How a transaction timestamp was obtained"""
    PARSED = "parsed"
    FALLBACK_DEFAULTED = "fallback_defaulted"


@dataclass
class NormalizedDateTime:
    """Timestamp normalization result tagged with its confidence"""
    value: datetime
    status: DateTimeStatus

    @property
    def is_fallback(self) -> bool:
        return self.status is DateTimeStatus.FALLBACK_DEFAULTED


@dataclass
class Cursor:
    """Saved position in the mailbox change log.

    Attributes:
        position: Opaque token issued by the change log (Gmail historyId)
        updated_at: When the position was stored
        items_at_update: Messages handled by the cycle that stored it
        active: Always True for the single live record
    """
    position: str
    updated_at: datetime
    items_at_update: int = 0
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'position': self.position,
            'updated_at': self.updated_at.isoformat(),
            'items_at_update': self.items_at_update,
            'active': self.active,
        }


@dataclass
class RawMessage:
    """Mailbox message as returned by the change-log client (never persisted)"""
    id: str
    log_position: str
    subject: str = ""
    sender: str = ""
    received_at: Optional[datetime] = None
    body_markup: str = ""


@dataclass
class MessageListing:
    """Message ids added since a position, plus the log head at listing time"""
    ids: List[str]
    current_position: Optional[str] = None


@dataclass
class TransactionRecord:
    """Incoming transfer extracted from one notification email"""
    receiver_account: str
    sender_account: str
    transaction_code: str
    amount_raw: str
    amount: int
    source_message_id: str
    source_log_position: str
    transaction_time: datetime
    time_parsed: bool = True
    sender_name: str = ""
    sender_bank: str = ""
    transaction_type: str = ""
    fee_raw: str = ""
    fee: int = 0
    description: str = ""
    processed_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['transaction_time'] = self.transaction_time.isoformat()
        data['processed_at'] = self.processed_at.isoformat() if self.processed_at else None
        return data


class AssemblyStatus(Enum):
    """Classification of one assembled notification"""
    ACCEPTED = "accepted"
    INCOMPLETE = "incomplete"
    OUTGOING = "outgoing"


@dataclass
class AssemblyResult:
    """Outcome of assembling a transaction from a message"""
    status: AssemblyStatus
    record: Optional[TransactionRecord] = None
    extracted: Optional[ExtractedFields] = None
    missing_fields: List[TransactionField] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status is AssemblyStatus.ACCEPTED


@dataclass
class StoreResult:
    """Result of an idempotent store call.

    ``created`` is True only when this call inserted the row. A duplicate
    found by lookup returns the existing record; a duplicate detected by the
    unique constraints returns no record.
    """
    record: Optional[TransactionRecord]
    created: bool


class CycleStatus(Enum):
    """Terminal status of one ingestion cycle"""
    COMPLETED = "completed"
    BOOTSTRAPPED = "bootstrapped"
    RECOVERED = "recovered"
    ALREADY_PROCESSING = "already_processing"
    ABORTED = "aborted"


@dataclass
class CycleResult:
    """Counters and outcome of one ingestion cycle"""
    status: CycleStatus
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    outgoing: int = 0
    failed: int = 0
    duplicates: int = 0
    filtered: int = 0
    cursor_position: Optional[str] = None
    duration: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'processed': self.processed,
            'succeeded': self.succeeded,
            'skipped': self.skipped,
            'outgoing': self.outgoing,
            'failed': self.failed,
            'duplicates': self.duplicates,
            'filtered': self.filtered,
            'cursor_position': self.cursor_position,
            'duration': self.duration,
            'error': self.error,
        }


@dataclass
class NotifierConfig:
    """Configuration for the notification pipeline"""
    database_path: str = "data/bank_notifier.db"
    poll_interval_seconds: float = 10
    sender_domains: Optional[List[str]] = None
    content_keywords: Optional[List[str]] = None
    field_labels: Optional[Dict[str, List[str]]] = None
    history_page_size: int = 100
    request_timeout_seconds: float = 30
    retention_days: int = 30
    log_directory: str = "logs"
    gmail_user_id: str = "me"
    gmail_client_id: Optional[str] = None
    gmail_client_secret: Optional[str] = None
    gmail_refresh_token: Optional[str] = None

    def __post_init__(self):
        if self.sender_domains is None:
            self.sender_domains = ["cake.vn"]
        if self.content_keywords is None:
            self.content_keywords = list(DEFAULT_CONTENT_KEYWORDS)
        labels = {key: list(values) for key, values in DEFAULT_FIELD_LABELS.items()}
        if self.field_labels:
            labels.update(self.field_labels)
        self.field_labels = labels
