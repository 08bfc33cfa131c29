"""Domain types shared by the user center: principals, users and payment orders."""

from __future__ import annotations

import base64
import binascii
import enum
import time
import zlib
from dataclasses import dataclass, field

_MAX_PRINCIPAL_LEN = 29
_ANONYMOUS_BYTES = b"\x04"

SPACE_CREATION_TOKEN = "ICP"
SPACE_CREATION_PRICE = 100_000_000


def _now_ns() -> int:
    return time.time_ns()


@dataclass(frozen=True, order=True)
class Principal:
    """An opaque identity made of up to 29 raw bytes."""

    data: bytes = b""

    def __post_init__(self) -> None:
        raw = bytes(self.data)
        if len(raw) > _MAX_PRINCIPAL_LEN:
            raise ValueError(
                f"principal is {len(raw)} bytes long, at most {_MAX_PRINCIPAL_LEN} allowed"
            )
        object.__setattr__(self, "data", raw)

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(_ANONYMOUS_BYTES)

    @classmethod
    def from_text(cls, text: str) -> Principal:
        """Parse the dashed base32 text form, verifying its checksum."""
        compact = text.replace("-", "").upper()
        padding = "=" * (-len(compact) % 8)
        try:
            raw = base64.b32decode(compact + padding)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"invalid principal text {text!r}") from exc
        if len(raw) < 4:
            raise ValueError(f"principal text {text!r} is too short")
        checksum, data = raw[:4], raw[4:]
        if int.from_bytes(checksum, "big") != zlib.crc32(data):
            raise ValueError(f"principal text {text!r} has a bad checksum")
        principal = cls(data)
        if principal.to_text() != text.lower():
            raise ValueError(f"principal text {text!r} is not in canonical form")
        return principal

    def to_text(self) -> str:
        raw = zlib.crc32(self.data).to_bytes(4, "big") + self.data
        encoded = base64.b32encode(raw).decode("ascii").rstrip("=").lower()
        return "-".join(encoded[start : start + 5] for start in range(0, len(encoded), 5))

    def is_anonymous(self) -> bool:
        return self.data == _ANONYMOUS_BYTES

    def __str__(self) -> str:
        return self.to_text()


class ErrorCode(enum.Enum):
    NO_DATA_FOUND = "NoDataFound"
    MAXIMUM_RECORDS = "MaximumRecords"
    STATE_NOT_SETTING = "StateNotSetting"
    DATA_UPDATE_ERROR = "DataUpdateError"
    DATA_INVALID = "DataInvalid"
    REMOTE_CALL_CREATE_ERROR = "RemoteCallCreateError"


class UserCenterError(Exception):
    """An error carrying an error code and a short description."""

    def __init__(self, code: ErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.message:
            return f"{self.code.value}: {self.message}"
        return self.code.value


class Environment(enum.Enum):
    TEST = "test"
    PRODUCTION = "production"


@dataclass
class Attribute:
    key: str
    value: str


@dataclass
class UserSpaceInfo:
    space_id: Principal
    oss_id: list[Principal] = field(default_factory=list)


@dataclass
class UserInfo:
    pid: Principal
    avatar: str = ""
    email: str = ""
    artist_name: str = ""
    location: str = ""
    genre: str = ""
    website: str = ""
    bio: str = ""
    handler: str = ""
    music_content_type: str | None = None
    born: int | None = None
    confirm_agreement: bool = False
    spaces: list[UserSpaceInfo] = field(default_factory=list)
    attributes: list[Attribute] = field(default_factory=list)
    trusted_ecdsa_pub_key: bytes | None = None
    trusted_eddsa_pub_key: bytes | None = None
    created_at: int = 0
    updated_at: int = 0


@dataclass
class UpdateUserInfo:
    """Partial profile update: only fields that are not None are applied."""

    avatar: str | None = None
    artist_name: str | None = None
    location: str | None = None
    genre: str | None = None
    website: str | None = None
    bio: str | None = None
    handler: str | None = None
    music_content_type: str | None = None
    born: int | None = None
    confirm_agreement: bool | None = None


@dataclass
class User:
    avatar: str = ""
    email: str = ""
    artist_name: str = ""
    location: str = ""
    genre: str = ""
    website: str = ""
    bio: str = ""
    handler: str = ""
    music_content_type: str | None = None
    born: int | None = None
    confirm_agreement: bool = False
    spaces: list[UserSpaceInfo] = field(default_factory=list)
    attributes: list[Attribute] = field(default_factory=list)
    trusted_ecdsa_pub_key: bytes | None = None
    trusted_eddsa_pub_key: bytes | None = None
    created_at: int = field(default_factory=_now_ns)
    updated_at: int = field(default_factory=_now_ns)

    def to_user_info(self, pid: Principal) -> UserInfo:
        return UserInfo(
            pid=pid,
            avatar=self.avatar,
            email=self.email,
            artist_name=self.artist_name,
            location=self.location,
            genre=self.genre,
            website=self.website,
            bio=self.bio,
            handler=self.handler,
            music_content_type=self.music_content_type,
            born=self.born,
            confirm_agreement=self.confirm_agreement,
            spaces=[
                UserSpaceInfo(space.space_id, list(space.oss_id)) for space in self.spaces
            ],
            attributes=[Attribute(attr.key, attr.value) for attr in self.attributes],
            trusted_ecdsa_pub_key=self.trusted_ecdsa_pub_key,
            trusted_eddsa_pub_key=self.trusted_eddsa_pub_key,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class PaymentStatus(enum.Enum):
    UNPAID = "unpaid"
    VERIFYING = "verifying"
    PAID = "paid"
    TIMED_OUT = "timed_out"
    REFUNDED = "refunded"


@dataclass(frozen=True)
class TokenPrice:
    token_name: str
    price: int

    @classmethod
    def for_space_creation(cls) -> TokenPrice:
        """The price charged for creating a user space."""
        return cls(SPACE_CREATION_TOKEN, SPACE_CREATION_PRICE)


@dataclass
class PaymentOrder:
    id: int
    payer: Principal
    amount: int
    payment_type: TokenPrice
    source: str
    token: str
    created_time: int
    amount_paid: int = 0
    status: PaymentStatus = PaymentStatus.UNPAID
    verified_time: int | None = None
    shared_time: int | None = None


@dataclass
class PaymentInfo:
    id: int
    recipient: bytes
    token: str
    amount: int
    payment_type: TokenPrice
    created_time: int


class QuerySort(enum.Enum):
    TIME_ASC = "time_asc"
    TIME_DESC = "time_desc"


@dataclass
class QueryCommonReq:
    page: int = 1
    size: int = 10
    sort: QuerySort = QuerySort.TIME_ASC


@dataclass
class QueryOrder:
    id: int
    payer: Principal
    recipient: bytes
    amount: int
    amount_paid: int
    token: str
    source: str
    status: PaymentStatus
    payment_type: TokenPrice
    created_time: int
    verified_time: int | None
    shared_time: int | None

    @classmethod
    def from_payment_order(cls, order: PaymentOrder, recipient: bytes) -> QueryOrder:
        return cls(
            id=order.id,
            payer=order.payer,
            recipient=bytes(recipient),
            amount=order.amount,
            amount_paid=order.amount_paid,
            token=order.token,
            source=order.source,
            status=order.status,
            payment_type=order.payment_type,
            created_time=order.created_time,
            verified_time=order.verified_time,
            shared_time=order.shared_time,
        )


@dataclass
class QueryOrderResp:
    page: int
    total: int
    has_more: bool
    data: list[QueryOrder] = field(default_factory=list)