"""Token ledgers and the payment operations built on them."""

from __future__ import annotations

import zlib
from collections.abc import Mapping

from usercenter.models import Principal
from usercenter.utils import account_id

ICP = "ICP"
CKBTC = "CKBTC"
_SUPPORTED_TOKENS = (ICP, CKBTC)
_U64_MAX = 2**64 - 1
_ACCOUNT_ID_LEN = 32


class LedgerError(Exception):
    """A ledger call or token transfer failed."""


def token_fee(token: str) -> int:
    """The transfer fee charged by the ledger of the given token."""
    return {ICP: 10_000, CKBTC: 10}.get(token, 0)


def _to_u64(value: int) -> int:
    if value > _U64_MAX:
        raise OverflowError("Value is too large to fit into a u64")
    return value


def _check_account_identifier(account: bytes) -> bytes:
    account = bytes(account)
    if len(account) != _ACCOUNT_ID_LEN:
        raise LedgerError(
            f"Invalid ICP account identifier: expected {_ACCOUNT_ID_LEN} bytes, "
            f"got {len(account)}"
        )
    if int.from_bytes(account[:4], "big") != zlib.crc32(account[4:]):
        raise LedgerError("Invalid ICP account identifier: checksum mismatch")
    return account


class Ledger:
    """In-memory token ledger keyed by account identifier, acting for one caller."""

    def __init__(self, caller: Principal, fee: int = 0) -> None:
        self.caller = caller
        self.fee = fee
        self._balances: dict[bytes, int] = {}
        self._height = 0

    def mint(self, account: bytes, amount: int) -> int:
        """Credit an account out of nothing; returns the block index."""
        if amount < 0:
            raise LedgerError("cannot mint a negative amount")
        account = _check_account_identifier(account)
        self._balances[account] = self._balances.get(account, 0) + amount
        return self._next_block()

    def account_balance(self, account: bytes) -> int:
        return self._balances.get(bytes(account), 0)

    async def balance_of(self, owner: Principal, subaccount: bytes | None = None) -> int:
        try:
            account = account_id(owner, subaccount)
        except ValueError as exc:
            raise LedgerError(str(exc)) from exc
        return self.account_balance(account)

    async def transfer(
        self, from_subaccount: bytes | None, to: bytes, amount: int, fee: int
    ) -> int:
        """Move tokens from the caller's subaccount; returns the block index."""
        if fee != self.fee:
            raise LedgerError(f"bad fee: expected {self.fee}, got {fee}")
        if amount < 0:
            raise LedgerError("cannot transfer a negative amount")
        try:
            source = account_id(self.caller, from_subaccount)
        except ValueError as exc:
            raise LedgerError(str(exc)) from exc
        destination = _check_account_identifier(to)
        balance = self.account_balance(source)
        if balance < amount + fee:
            raise LedgerError(f"insufficient funds: balance {balance}")
        self._balances[source] = balance - amount - fee
        self._balances[destination] = self.account_balance(destination) + amount
        return self._next_block()

    def _next_block(self) -> int:
        height = self._height
        self._height += 1
        return height


class Payments:
    """Token balances and transfers of one canister across its ledgers."""

    def __init__(self, canister_id: Principal, ledgers: Mapping[str, Ledger]) -> None:
        self.canister_id = canister_id
        self.ledgers = dict(ledgers)

    def _ledger(self, token: str) -> Ledger:
        if token not in _SUPPORTED_TOKENS:
            raise LedgerError("Unsupported token")
        try:
            return self.ledgers[token]
        except KeyError:
            raise LedgerError(f"No ledger configured for {token}") from None

    async def balance(self, token: str, subaccount: bytes | None = None) -> int:
        """Balance of the canister's subaccount; 0 for unknown tokens or failed calls."""
        if token not in _SUPPORTED_TOKENS:
            return 0
        ledger = self._ledger(token)
        try:
            value = await ledger.balance_of(self.canister_id, subaccount)
        except LedgerError:
            return 0
        return _to_u64(value)

    async def transfer(
        self, token: str, from_subaccount: bytes | None, to: bytes, amount: int
    ) -> int:
        """Send tokens from a canister subaccount; returns the block index.

        For ICP ``to`` is an account identifier, for CKBTC the owner's principal bytes.
        """
        if token == ICP:
            destination = _check_account_identifier(to)
        elif token == CKBTC:
            try:
                destination = account_id(Principal(bytes(to)), None)
            except ValueError as exc:
                raise LedgerError(f"Invalid principal: {exc}") from exc
        else:
            raise LedgerError("Unsupported token")
        ledger = self._ledger(token)
        try:
            height = await ledger.transfer(
                from_subaccount, destination, amount, token_fee(token)
            )
        except LedgerError as exc:
            raise LedgerError(f"ledger transfer error {exc}") from exc
        return _to_u64(height)

    def default_account_id(self) -> bytes:
        return account_id(self.canister_id, None)