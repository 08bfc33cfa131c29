import pytest

from usercenter.models import (
    Environment,
    ErrorCode,
    PaymentStatus,
    Principal,
    QueryCommonReq,
    QuerySort,
    User,
    UserCenterError,
    UserSpaceInfo,
)
from usercenter.store import PaymentStore, State, Store, UserStore
from usercenter.utils import generate_order_subaccount

ALICE = Principal(b"\x01\x02")
BOB = Principal(b"\x03")
CAROL = Principal(b"\x00\x09")


def test_state_defaults():
    state = State()
    assert state.name == "User Center"
    assert state.owner.is_anonymous()
    assert state.dao_canister_id.is_anonymous()
    assert state.env is Environment.TEST
    assert state.invite_codes == []


def test_state_round_trip():
    state = State(
        name="hub",
        owner=ALICE,
        dao_canister_id=BOB,
        indexer_canister_id=CAROL,
        user_count=5,
        next_order_id=7,
        total_orders=3,
        invite_codes=["a", "b"],
        env=Environment.PRODUCTION,
    )
    assert State.from_bytes(state.to_bytes()) == state


def test_state_from_garbage_raises():
    with pytest.raises(ValueError):
        State.from_bytes(b"\xff\x00not state")


def test_user_store_add_get_copy():
    users = UserStore()
    users.add(ALICE, User(avatar="a.png"))
    fetched = users.get(ALICE)
    assert fetched.avatar == "a.png"
    fetched.avatar = "changed"
    assert users.get(ALICE).avatar == "a.png"
    assert users.get(BOB) is None


def test_user_store_update_and_missing():
    users = UserStore()
    users.add(ALICE, User())
    users.update(ALICE, lambda user: setattr(user, "email", "a@example.com"))
    assert users.get(ALICE).email == "a@example.com"
    with pytest.raises(UserCenterError) as info:
        users.update(BOB, lambda user: None)
    assert info.value.code is ErrorCode.NO_DATA_FOUND


def test_user_store_listing():
    users = UserStore()
    for pid in (ALICE, BOB, CAROL):
        users.add(pid, User())
    assert users.count() == 3
    assert users.pids() == sorted([ALICE, BOB, CAROL])
    infos = users.user_infos([BOB, Principal(b"\x77"), ALICE])
    assert [info.pid for info in infos] == [BOB, ALICE]


def test_user_store_spaces():
    users = UserStore()
    users.add(ALICE, User())
    assert users.spaces_count(ALICE) == 0
    assert users.spaces_count(BOB) == 0
    users.add_space(ALICE, UserSpaceInfo(BOB, [CAROL]))
    assert users.spaces_count(ALICE) == 1
    assert users.get(ALICE).spaces[0].oss_id == [CAROL]
    with pytest.raises(UserCenterError):
        users.add_space(BOB, UserSpaceInfo(CAROL))


def test_create_order_and_payment_info():
    payments = PaymentStore()
    info = payments.create_order(4, ALICE, "web", "ICP", 500, now=123)
    assert info.recipient == generate_order_subaccount(ALICE, 4)
    assert info.created_time == 123
    order = payments.get(4)
    assert order.status is PaymentStatus.UNPAID
    assert order.amount_paid == 0
    assert order.payer == ALICE
    assert payments.get(5) is None


def test_is_paid_by():
    payments = PaymentStore()
    payments.create_order(1, ALICE, "web", "ICP", 500, now=0)
    assert not payments.is_paid_by(ALICE, 1)
    order = payments.get(1)
    order.status = PaymentStatus.PAID
    payments.put(order)
    assert payments.is_paid_by(ALICE, 1)
    assert not payments.is_paid_by(BOB, 1)
    assert not payments.is_paid_by(ALICE, 2)


def _filled_payments():
    payments = PaymentStore()
    for order_id in range(5):
        payments.create_order(order_id, ALICE, "web", "ICP", 1, now=order_id)
    payments.create_order(5, BOB, "web", "ICP", 1, now=5)
    return payments


def test_limit_orders_paging():
    payments = _filled_payments()
    total, has_more, data = payments.limit_orders(ALICE, QueryCommonReq(page=1, size=2))
    assert total == 5
    assert has_more
    assert [order.id for order in data] == [0, 1]
    total, has_more, data = payments.limit_orders(ALICE, QueryCommonReq(page=3, size=2))
    assert not has_more
    assert [order.id for order in data] == [4]


def test_limit_orders_desc_and_filter():
    payments = _filled_payments()
    total, _, data = payments.limit_orders(
        ALICE, QueryCommonReq(page=1, size=3, sort=QuerySort.TIME_DESC)
    )
    assert [order.id for order in data] == [4, 3, 2]
    total, has_more, data = payments.limit_orders(BOB, QueryCommonReq())
    assert total == 1
    assert not has_more
    assert data[0].recipient == generate_order_subaccount(BOB, 5)


def test_invite_codes():
    store = Store()
    assert store.add_invite_code("abc") == "abc"
    assert store.add_invite_code("abc") == "abc"
    assert store.state.invite_codes == ["abc"]
    assert store.check_invite_code("abc")
    assert store.delete_invite_code("abc") == "abc"
    assert not store.check_invite_code("abc")
    assert store.delete_invite_code("missing") == "missing"


def test_invite_code_limit():
    store = Store()
    for index in range(20):
        store.add_invite_code(f"code{index}")
    with pytest.raises(UserCenterError) as info:
        store.add_invite_code("extra")
    assert info.value.code is ErrorCode.MAXIMUM_RECORDS
    assert store.add_invite_code("code0") == "code0"


def test_save_and_load():
    store = Store()
    store.state.name = "saved"
    store.save()
    store.state.name = "unsaved"
    store.load()
    assert store.state.name == "saved"


def test_load_without_save_gives_defaults():
    store = Store()
    store.state.next_order_id = 9
    store.load()
    assert store.state == State()