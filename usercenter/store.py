"""Persistent state, user records and payment orders of the user center."""

from __future__ import annotations

import copy
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from usercenter.models import (
    Environment,
    ErrorCode,
    PaymentInfo,
    PaymentOrder,
    PaymentStatus,
    Principal,
    QueryCommonReq,
    QueryOrder,
    QuerySort,
    TokenPrice,
    User,
    UserCenterError,
    UserInfo,
    UserSpaceInfo,
)
from usercenter.utils import check_page_size, generate_order_subaccount

MAX_INVITE_CODES = 20


@dataclass
class State:
    """Settings and counters of the user center, persisted across upgrades."""

    name: str = "User Center"
    owner: Principal = field(default_factory=Principal.anonymous)
    dao_canister_id: Principal = field(default_factory=Principal.anonymous)
    indexer_canister_id: Principal = field(default_factory=Principal.anonymous)
    user_count: int = 0
    next_order_id: int = 0
    total_orders: int = 0
    invite_codes: list[str] = field(default_factory=list)
    env: Environment = Environment.TEST

    def to_bytes(self) -> bytes:
        payload = {
            "name": self.name,
            "owner": self.owner.data.hex(),
            "dao_canister_id": self.dao_canister_id.data.hex(),
            "indexer_canister_id": self.indexer_canister_id.data.hex(),
            "user_count": self.user_count,
            "next_order_id": self.next_order_id,
            "total_orders": self.total_orders,
            "invite_codes": list(self.invite_codes),
            "env": self.env.value,
        }
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> State:
        try:
            payload = json.loads(bytes(data).decode("utf-8"))
            return cls(
                name=str(payload["name"]),
                owner=Principal(bytes.fromhex(payload["owner"])),
                dao_canister_id=Principal(bytes.fromhex(payload["dao_canister_id"])),
                indexer_canister_id=Principal(
                    bytes.fromhex(payload["indexer_canister_id"])
                ),
                user_count=int(payload["user_count"]),
                next_order_id=int(payload["next_order_id"]),
                total_orders=int(payload["total_orders"]),
                invite_codes=[str(code) for code in payload["invite_codes"]],
                env=Environment(payload["env"]),
            )
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError("failed to decode User Center data") from exc


class UserStore:
    """User records keyed by principal, iterated in principal order."""

    def __init__(self) -> None:
        self._users: dict[Principal, User] = {}

    def get(self, pid: Principal) -> User | None:
        """A copy of the stored user, or None."""
        user = self._users.get(pid)
        return copy.deepcopy(user) if user is not None else None

    def add(self, pid: Principal, user: User) -> None:
        self._users[pid] = copy.deepcopy(user)

    def update(self, pid: Principal, update_fn: Callable[[User], None]) -> None:
        """Apply ``update_fn`` to the stored user and write it back."""
        stored = self._users.get(pid)
        if stored is None:
            raise UserCenterError(
                ErrorCode.NO_DATA_FOUND, f"User with principal {pid} not found"
            )
        user = copy.deepcopy(stored)
        update_fn(user)
        self._users[pid] = user

    def user_infos(self, pids: Iterable[Principal]) -> list[UserInfo]:
        """Profiles of the given principals that are registered, in the given order."""
        return [
            self._users[pid].to_user_info(pid) for pid in pids if pid in self._users
        ]

    def count(self) -> int:
        return len(self._users)

    def pids(self) -> list[Principal]:
        return sorted(self._users)

    def spaces_count(self, pid: Principal) -> int:
        user = self._users.get(pid)
        return len(user.spaces) if user is not None else 0

    def add_space(self, pid: Principal, space_info: UserSpaceInfo) -> None:
        self.update(pid, lambda user: user.spaces.append(space_info))

    def __contains__(self, pid: object) -> bool:
        return pid in self._users

    def __len__(self) -> int:
        return len(self._users)


class PaymentStore:
    """Payment orders keyed by order id, iterated in id order."""

    def __init__(self) -> None:
        self._orders: dict[int, PaymentOrder] = {}

    def get(self, order_id: int) -> PaymentOrder | None:
        """A copy of the stored order, or None."""
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    def put(self, order: PaymentOrder) -> None:
        self._orders[order.id] = copy.deepcopy(order)

    def is_paid_by(self, payer: Principal, order_id: int) -> bool:
        order = self._orders.get(order_id)
        return (
            order is not None
            and order.status is PaymentStatus.PAID
            and order.payer == payer
        )

    def create_order(
        self,
        order_id: int,
        payer: Principal,
        source: str,
        token: str,
        amount: int,
        now: int,
    ) -> PaymentInfo:
        """Record a new unpaid order and describe where to pay it."""
        payment_type = TokenPrice(token, amount)
        self.put(
            PaymentOrder(
                id=order_id,
                payer=payer,
                amount=amount,
                payment_type=payment_type,
                source=source,
                token=token,
                created_time=now,
            )
        )
        return PaymentInfo(
            id=order_id,
            recipient=generate_order_subaccount(payer, order_id),
            token=token,
            amount=amount,
            payment_type=payment_type,
            created_time=now,
        )

    def limit_orders(
        self, caller: Principal, req: QueryCommonReq
    ) -> tuple[int, bool, list[QueryOrder]]:
        """One page of the caller's orders: (total, has_more, page data)."""
        page, size = check_page_size(req.page, req.size)
        start = (page - 1) * size
        end = start + size

        ids = sorted(self._orders, reverse=req.sort is QuerySort.TIME_DESC)
        mine = (self._orders[key] for key in ids)
        data: list[QueryOrder] = []
        total = 0
        for order in mine:
            if order.payer != caller:
                continue
            if start <= total < end:
                data.append(
                    QueryOrder.from_payment_order(
                        copy.deepcopy(order),
                        generate_order_subaccount(order.payer, order.id),
                    )
                )
            total += 1
        return total, total > end, data

    def __len__(self) -> int:
        return len(self._orders)


class Store:
    """The working state, its saved snapshot, and the user and payment records."""

    def __init__(self) -> None:
        self.state = State()
        self._saved_state = State().to_bytes()
        self.users = UserStore()
        self.payments = PaymentStore()

    def save(self) -> None:
        self._saved_state = self.state.to_bytes()

    def load(self) -> None:
        self.state = State.from_bytes(self._saved_state)

    def add_invite_code(self, invite_code: str) -> str:
        codes = self.state.invite_codes
        if invite_code in codes:
            return invite_code
        if len(codes) >= MAX_INVITE_CODES:
            raise UserCenterError(ErrorCode.MAXIMUM_RECORDS, "invite codes")
        codes.append(invite_code)
        return invite_code

    def check_invite_code(self, invite_code: str) -> bool:
        return invite_code in self.state.invite_codes

    def delete_invite_code(self, invite_code: str) -> str:
        codes = self.state.invite_codes
        if invite_code in codes:
            codes.remove(invite_code)
        return invite_code