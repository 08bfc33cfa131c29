# usercenter

An in-process user registry service. It keeps user profiles, hands out
storage spaces to users (by invite code or by a paid order), tracks payment
orders against per-order ledger subaccounts, and keeps a saved snapshot of
its configuration state that can be restored after an upgrade.

## Installing

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `usercenter.models` – the data types: `Principal` (with `anonymous`,
  `from_text`, `to_text`, `is_anonymous`), `User` (with `to_user_info`),
  `UserInfo`, `UpdateUserInfo`, `Attribute`, `UserSpaceInfo`,
  `PaymentOrder`, `PaymentInfo`, `TokenPrice` (with `for_space_creation`:
  100 000 000 units of ICP), `QueryCommonReq`, `QueryOrder`,
  `QueryOrderResp`, the enums `Environment`, `PaymentStatus`, `QuerySort`,
  `ErrorCode`, and the exception `UserCenterError`.
- `usercenter.utils` – `check_page_size` (page defaults to 1, size to 10,
  size at most 100), `generate_order_subaccount` (a CRC32-prefixed SHA-224
  digest naming the 32-byte subaccount an order is paid into) and
  `account_id` (the 32-byte ledger account identifier of a principal's
  subaccount).
- `usercenter.ledger` – `Ledger`, an in-memory token ledger (`mint`,
  `account_balance`, async `balance_of` and `transfer`); `token_fee`
  (10 000 for ICP, 10 for CKBTC, 0 otherwise); `Payments`, which routes
  ICP and CKBTC balances and transfers to the right `Ledger`; and
  `LedgerError`.
- `usercenter.store` – `State` (with `to_bytes` / `from_bytes`, a JSON
  encoding), `UserStore`, `PaymentStore` (including `limit_orders` for
  paging a caller's orders) and `Store`, which ties them together with
  `save` / `load` and the invite-code list (at most 20 codes).
- `usercenter.service` – `UserCenter`, the service itself, together with
  `InitArgs`, `UpgradeArgs`, `StatusRequest`, `StatusResponse` and
  `SpaceFactory`, an in-memory allocator of space and storage identifiers.

## Example

```python
import asyncio

from usercenter.ledger import Ledger, Payments, token_fee
from usercenter.models import Environment, Principal, QueryCommonReq
from usercenter.service import InitArgs, SpaceFactory, UserCenter
from usercenter.utils import account_id

canister = Principal(b"\x00\x01")
owner = Principal(b"\x00\x02")
dao = Principal(b"\x00\x03")
alice = Principal(b"\x01\x02\x03")

icp = Ledger(canister, fee=token_fee("ICP"))
payments = Payments(canister, {"ICP": icp})
center = UserCenter(payments, SpaceFactory())
center.init(InitArgs(name="User Center", owner=owner,
                     env=Environment.TEST, dao_canister_id=dao))

center.user_login(alice)
center.set_email(alice, "alice@example.com")
print(center.get_email(alice))

order = center.create_payment_order(alice, "web")
icp.mint(account_id(canister, order.recipient), order.amount)


async def pay_and_create():
    await center.confirm_payment_order(alice, order.id)
    return await center.create_user_space_by_payment(alice, order.id)


space_id = asyncio.run(pay_and_create())
print(space_id, center.query_orders(alice, QueryCommonReq()).total)
```

## Behaviour

- Calls that need an identified caller raise `PermissionError` for the
  anonymous principal; owner calls (`admin_login`, `update_dao_canister`,
  `add_user_space_info`, `add_invite_code`) raise `PermissionError` for
  anyone but the owner set at `init` or `post_upgrade`.
- Failures of the service's own rules are raised as `UserCenterError`,
  which carries an `ErrorCode`. `init` and `post_upgrade` raise
  `ValueError` when given the wrong kind of arguments; `init` also refuses
  `None`.
- `set_avatar`, `set_email`, `set_public_key` and `set_user_info` return
  `False` for an unregistered caller; `add_user_attribute` raises instead
  and replaces any attribute with the same key.
- A space is created with `create_user_space_by_invite_code` (the code is
  consumed) or with `create_user_space_by_payment` once the caller's order
  has been confirmed. Each user may hold one space, and a DAO identifier
  must have been set.
- `confirm_payment_order` marks an order paid when the order's subaccount
  holds at least the price, and moves what exceeds the space fee to the
  service's default account. An unpaid order times out 15 minutes after
  creation.
- `refund_payment_order` sends back whatever arrived on an order that is
  neither paid nor already refunded, less the token's fee.
- `canister_get_status` reports the `cycles`, `stable_memory_size` and
  `heap_memory_size` attributes of the `UserCenter`, which the caller sets.

## What it does not do

The ledgers and the space allocator are in-memory objects: nothing talks
to a real ledger or creates real canisters. `Store.save` keeps its snapshot
in memory only, so nothing is written to disk. There is no command-line
program and no network server; the service is used from Python code.