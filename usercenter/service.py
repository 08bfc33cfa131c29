"""The user center service: lifecycle, queries and updates on users, spaces and payments."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from usercenter.ledger import LedgerError, Payments, token_fee
from usercenter.models import (
    Attribute,
    Environment,
    ErrorCode,
    PaymentInfo,
    PaymentOrder,
    PaymentStatus,
    Principal,
    QueryCommonReq,
    QueryOrderResp,
    TokenPrice,
    UpdateUserInfo,
    User,
    UserCenterError,
    UserInfo,
    UserSpaceInfo,
)
from usercenter.store import Store
from usercenter.utils import generate_order_subaccount

logger = logging.getLogger(__name__)

MAX_CREATE_SPACE_SIZE = 1
DEFAULT_SPACE_FEE = 10_000
PAYMENT_TIMEOUT_NS = 15 * 60 * 1_000_000_000
_EDDSA_KEY_LEN = 32


@dataclass
class InitArgs:
    name: str
    owner: Principal
    env: Environment
    dao_canister_id: Principal
    indexer_canister_id: Principal | None = None


@dataclass
class UpgradeArgs:
    name: str | None = None
    owner: Principal | None = None
    env: Environment | None = None
    dao_canister_id: Principal | None = None
    indexer_canister_id: Principal | None = None


@dataclass
class StatusRequest:
    cycles: bool = False
    memory_size: bool = False
    heap_memory_size: bool = False


@dataclass
class StatusResponse:
    cycles: int | None = None
    memory_size: int | None = None
    heap_memory_size: int | None = None


class SpaceFactory:
    """Allocates a space canister and its storage canister for an owner."""

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = capacity
        self.created: list[tuple[Principal, Environment, Principal, Principal]] = []

    async def create_space_and_oss(
        self, owner: Principal, env: Environment
    ) -> tuple[Principal, Principal]:
        if self.capacity is not None and len(self.created) >= self.capacity:
            raise RuntimeError("no canisters left to allocate")
        index = len(self.created).to_bytes(4, "big")
        space_id = Principal(b"space" + index)
        oss_id = Principal(b"oss" + index)
        self.created.append((owner, env, space_id, oss_id))
        return space_id, oss_id


class UserCenter:
    """User registry with space creation gated by invite codes or payments."""

    def __init__(
        self,
        payments: Payments,
        space_factory: SpaceFactory,
        *,
        store: Store | None = None,
        clock: Callable[[], int] = time.time_ns,
        space_fee: int = DEFAULT_SPACE_FEE,
    ) -> None:
        self.payments = payments
        self.space_factory = space_factory
        self.store = store if store is not None else Store()
        self.clock = clock
        self.space_fee = space_fee
        self.cycles = 0
        self.stable_memory_size = 0
        self.heap_memory_size = 0

    # guards

    @staticmethod
    def _require_signed_in(caller: Principal) -> None:
        if caller.is_anonymous():
            raise PermissionError("Error: Anonymous principal is not allowed")

    def _require_owner(self, caller: Principal) -> None:
        if caller != self.store.state.owner:
            raise PermissionError("Error: Only the owner can call this action.")

    # lifecycle

    def init(self, args: InitArgs | UpgradeArgs | None) -> None:
        if args is None:
            raise ValueError(
                "No initialization arguments provided. Use default initialization."
            )
        if isinstance(args, UpgradeArgs):
            raise ValueError(
                "Cannot initialize the canister with an Upgrade args. "
                "Please provide an Init args."
            )
        state = self.store.state
        state.name = args.name
        state.owner = args.owner
        state.dao_canister_id = args.dao_canister_id
        state.env = args.env
        state.indexer_canister_id = (
            args.indexer_canister_id
            if args.indexer_canister_id is not None
            else Principal.anonymous()
        )
        state.user_count = 0
        self.store.save()

    def pre_upgrade(self) -> None:
        self.store.save()

    def post_upgrade(self, args: InitArgs | UpgradeArgs | None) -> None:
        self.store.load()
        if args is None:
            return
        if isinstance(args, InitArgs):
            raise ValueError(
                "Cannot upgrade the canister with Init args. Please provide Upgrade args."
            )
        state = self.store.state
        if args.name is not None:
            state.name = args.name
        if args.owner is not None:
            state.owner = args.owner
        if args.dao_canister_id is not None:
            state.dao_canister_id = args.dao_canister_id
        if args.indexer_canister_id is not None:
            state.indexer_canister_id = args.indexer_canister_id
        if args.env is not None:
            state.env = args.env

    def canister_get_status(self, request: StatusRequest) -> StatusResponse:
        return StatusResponse(
            cycles=self.cycles if request.cycles else None,
            memory_size=(
                self.stable_memory_size + self.heap_memory_size
                if request.memory_size
                else None
            ),
            heap_memory_size=self.heap_memory_size if request.heap_memory_size else None,
        )

    # queries

    def profile(self, caller: Principal) -> UserInfo | None:
        return self.get_user_info(caller)

    def get_user_info(self, user_pid: Principal) -> UserInfo | None:
        user = self.store.users.get(user_pid)
        return user.to_user_info(user_pid) if user is not None else None

    def get_user_infos(self, user_pids: list[Principal]) -> list[UserInfo]:
        return self.store.users.user_infos(user_pids)

    def get_user_count(self) -> int:
        return self.store.users.count()

    def get_user_pids(self) -> list[Principal]:
        return self.store.users.pids()

    def _lookup(self, caller: Principal, user: Principal | None) -> User | None:
        return self.store.users.get(user if user is not None else caller)

    def get_avatar(self, caller: Principal, user: Principal | None = None) -> str:
        found = self._lookup(caller, user)
        return found.avatar if found is not None else ""

    def get_email(self, caller: Principal, user: Principal | None = None) -> str:
        found = self._lookup(caller, user)
        return found.email if found is not None else ""

    def get_user_spaces(
        self, caller: Principal, user: Principal | None = None
    ) -> list[UserSpaceInfo]:
        found = self._lookup(caller, user)
        return list(found.spaces) if found is not None else []

    def query_orders(self, caller: Principal, req: QueryCommonReq) -> QueryOrderResp:
        self._require_signed_in(caller)
        total, has_more, data = self.store.payments.limit_orders(caller, req)
        return QueryOrderResp(page=req.page, total=total, has_more=has_more, data=data)

    def canister_account(self) -> tuple[str, bytes]:
        account = self.payments.default_account_id()
        return account.hex(), account

    # updates on users

    def _login(self, pid: Principal) -> UserInfo:
        user = self.store.users.get(pid)
        if user is None:
            now = self.clock()
            user = User(created_at=now, updated_at=now)
            self.store.users.add(pid, user)
        return user.to_user_info(pid)

    def user_login(self, caller: Principal) -> UserInfo:
        self._require_signed_in(caller)
        return self._login(caller)

    def admin_login(self, caller: Principal, user_pid: Principal) -> UserInfo:
        self._require_owner(caller)
        return self._login(user_pid)

    def _update_user(
        self, pid: Principal, update_fn: Callable[[User], None], what: str
    ) -> None:
        try:
            self.store.users.update(pid, update_fn)
        except UserCenterError as exc:
            raise UserCenterError(ErrorCode.DATA_UPDATE_ERROR, what) from exc

    def set_avatar(self, caller: Principal, new_avatar: str) -> bool:
        self._require_signed_in(caller)
        if caller not in self.store.users:
            return False
        now = self.clock()

        def apply(user: User) -> None:
            user.avatar = new_avatar
            user.updated_at = now

        self._update_user(caller, apply, "User Avatar")
        return True

    def set_email(self, caller: Principal, email: str) -> bool:
        self._require_signed_in(caller)
        if caller not in self.store.users:
            return False
        now = self.clock()

        def apply(user: User) -> None:
            user.email = email
            user.updated_at = now

        self._update_user(caller, apply, "User Email")
        return True

    def set_public_key(
        self,
        caller: Principal,
        ecdsa_pub_key: bytes | None,
        eddsa_pub_key: bytes | None,
    ) -> bool:
        self._require_signed_in(caller)
        if eddsa_pub_key is not None and len(eddsa_pub_key) != _EDDSA_KEY_LEN:
            raise ValueError(
                f"EdDSA public key must be {_EDDSA_KEY_LEN} bytes, got {len(eddsa_pub_key)}"
            )
        if caller not in self.store.users:
            return False
        now = self.clock()

        def apply(user: User) -> None:
            user.trusted_ecdsa_pub_key = (
                bytes(ecdsa_pub_key) if ecdsa_pub_key is not None else None
            )
            user.trusted_eddsa_pub_key = (
                bytes(eddsa_pub_key) if eddsa_pub_key is not None else None
            )
            user.updated_at = now

        self._update_user(caller, apply, "User Public Key")
        return True

    def add_user_attribute(self, caller: Principal, new_attribute: Attribute) -> bool:
        self._require_signed_in(caller)
        if caller not in self.store.users:
            raise UserCenterError(ErrorCode.NO_DATA_FOUND, "User not found")
        now = self.clock()

        def apply(user: User) -> None:
            user.attributes = [a for a in user.attributes if a.key != new_attribute.key]
            user.attributes.append(Attribute(new_attribute.key, new_attribute.value))
            user.updated_at = now

        self._update_user(caller, apply, "User Attribute")
        return True

    def set_user_info(self, caller: Principal, update_info: UpdateUserInfo) -> bool:
        self._require_signed_in(caller)
        if caller not in self.store.users:
            return False
        now = self.clock()
        text_fields = (
            "avatar",
            "artist_name",
            "location",
            "genre",
            "website",
            "bio",
            "handler",
            "music_content_type",
            "born",
            "confirm_agreement",
        )

        def apply(user: User) -> None:
            for name in text_fields:
                value = getattr(update_info, name)
                if value is not None:
                    setattr(user, name, value)
            user.updated_at = now

        self._update_user(caller, apply, "User Info")
        return True

    # spaces

    async def _create_user_space(self, caller: Principal) -> Principal:
        if caller not in self.store.users:
            raise UserCenterError(ErrorCode.NO_DATA_FOUND, "User not registered")
        if self.store.users.spaces_count(caller) >= MAX_CREATE_SPACE_SIZE:
            raise UserCenterError(ErrorCode.MAXIMUM_RECORDS, "User Spaces Count")
        state = self.store.state
        if state.dao_canister_id.is_anonymous():
            raise UserCenterError(ErrorCode.STATE_NOT_SETTING, "dao_canister_id")
        try:
            space_id, oss_id = await self.space_factory.create_space_and_oss(
                caller, state.env
            )
        except Exception as exc:
            logger.error("create_space_and_oss failed: %r", exc)
            raise UserCenterError(
                ErrorCode.REMOTE_CALL_CREATE_ERROR,
                str(exc) or "create_space_and_oss_canister",
            ) from exc
        try:
            self.store.users.add_space(caller, UserSpaceInfo(space_id, [oss_id]))
        except UserCenterError as exc:
            raise UserCenterError(ErrorCode.DATA_UPDATE_ERROR, "add_space_to_user") from exc
        return space_id

    async def create_user_space_by_invite_code(
        self, caller: Principal, invite_code: str
    ) -> Principal:
        self._require_signed_in(caller)
        if not self.store.check_invite_code(invite_code):
            raise UserCenterError(
                ErrorCode.NO_DATA_FOUND, "Invalid or missing invite code"
            )
        self.store.delete_invite_code(invite_code)
        return await self._create_user_space(caller)

    async def create_user_space_by_payment(
        self, caller: Principal, order_id: int
    ) -> Principal:
        self._require_signed_in(caller)
        if not self.store.payments.is_paid_by(caller, order_id):
            raise UserCenterError(ErrorCode.DATA_INVALID, "Invalid Payment Order Info")
        return await self._create_user_space(caller)

    def update_dao_canister(self, caller: Principal, dao_canister: Principal) -> Principal:
        self._require_owner(caller)
        self.store.state.dao_canister_id = dao_canister
        return dao_canister

    def add_user_space_info(
        self, caller: Principal, user_pid: Principal, space_info: UserSpaceInfo
    ) -> bool:
        self._require_owner(caller)
        if user_pid not in self.store.users:
            raise UserCenterError(ErrorCode.NO_DATA_FOUND, "User")
        self._update_user(
            user_pid, lambda user: user.spaces.append(space_info), "User space info"
        )
        return True

    def add_invite_code(self, caller: Principal, invite_code: str) -> str:
        self._require_owner(caller)
        return self.store.add_invite_code(invite_code)

    # payments

    def create_payment_order(self, caller: Principal, source: str) -> PaymentInfo:
        self._require_signed_in(caller)
        self.store.load()
        state = self.store.state
        price = TokenPrice.for_space_creation()
        info = self.store.payments.create_order(
            state.next_order_id, caller, source, price.token_name, price.price, self.clock()
        )
        state.total_orders += 1
        state.next_order_id += 1
        self.store.save()
        return info

    def _order(self, order_id: int) -> PaymentOrder:
        order = self.store.payments.get(order_id)
        if order is None:
            raise UserCenterError(
                ErrorCode.NO_DATA_FOUND, f"Order with id {order_id} not found"
            )
        return order

    async def confirm_payment_order(self, caller: Principal, pay_id: int) -> bool:
        self._require_signed_in(caller)
        order = self._order(pay_id)
        verified = await self._verify(order)
        if verified:
            await self._share(order)
        self.store.payments.put(order)
        if not verified:
            raise UserCenterError(ErrorCode.DATA_INVALID, "Order verification failed")
        return True

    async def refund_payment_order(
        self, caller: Principal, pay_id: int, to: bytes
    ) -> bool:
        self._require_signed_in(caller)
        order = self._order(pay_id)
        if order.payer != caller:
            raise PermissionError("Caller is not the owner of the order")
        refunded = await self._refund(order, bytes(to))
        self.store.payments.put(order)
        if not refunded:
            raise UserCenterError(ErrorCode.DATA_INVALID, "Refund process failed")
        return True

    async def _verify(self, order: PaymentOrder) -> bool:
        if order.status is PaymentStatus.PAID:
            return True
        if order.status is not PaymentStatus.UNPAID:
            return False
        order.status = PaymentStatus.VERIFYING
        if order.created_time + PAYMENT_TIMEOUT_NS < self.clock():
            order.status = PaymentStatus.TIMED_OUT
            return False
        subaccount = generate_order_subaccount(order.payer, order.id)
        amount_paid = await self.payments.balance(order.token, subaccount)
        order.amount_paid = amount_paid
        if amount_paid == 0 or amount_paid < order.amount:
            order.status = PaymentStatus.UNPAID
            return False
        order.status = PaymentStatus.PAID
        order.verified_time = self.clock()
        return True

    async def _share(self, order: PaymentOrder) -> bool:
        if order.status is not PaymentStatus.PAID or order.shared_time is not None:
            return False
        amount = order.amount_paid
        if amount <= self.space_fee:
            order.shared_time = self.clock()
            return True
        shared_amount = min(amount - self.space_fee, amount)
        subaccount = generate_order_subaccount(order.payer, order.id)
        try:
            await self.payments.transfer(
                order.token, subaccount, self.payments.default_account_id(), shared_amount
            )
        except LedgerError as exc:
            logger.error("share_pay error: %s", exc)
            return False
        order.shared_time = self.clock()
        return True

    async def _refund(self, order: PaymentOrder, refund_to: bytes) -> bool:
        if order.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            return False
        if order.amount == 0:
            return False
        subaccount = generate_order_subaccount(order.payer, order.id)
        balance = await self.payments.balance(order.token, subaccount)
        order.amount_paid = balance
        fee = token_fee(order.token)
        if balance < fee:
            return False
        try:
            await self.payments.transfer(order.token, subaccount, refund_to, balance - fee)
        except LedgerError:
            return False
        order.status = PaymentStatus.REFUNDED
        order.verified_time = self.clock()
        return True