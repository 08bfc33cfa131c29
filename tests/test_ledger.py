import pytest

from usercenter.ledger import Ledger, LedgerError, Payments, token_fee
from usercenter.models import Principal
from usercenter.utils import account_id

CANISTER = Principal(b"\x10")
PAYER = Principal(b"\x01")
SUB = b"\x07" * 32


def make_payments():
    icp = Ledger(CANISTER, fee=token_fee("ICP"))
    ckbtc = Ledger(CANISTER, fee=token_fee("CKBTC"))
    return Payments(CANISTER, {"ICP": icp, "CKBTC": ckbtc}), icp, ckbtc


@pytest.mark.parametrize("token, fee", [("ICP", 10_000), ("CKBTC", 10), ("DOGE", 0)])
def test_token_fee(token, fee):
    assert token_fee(token) == fee


@pytest.mark.asyncio
async def test_balance_after_mint():
    payments, icp, _ = make_payments()
    icp.mint(account_id(CANISTER, SUB), 50_000)
    assert await payments.balance("ICP", SUB) == 50_000
    assert await payments.balance("ICP", None) == 0


@pytest.mark.asyncio
async def test_balance_unknown_token_is_zero():
    payments, _, _ = make_payments()
    assert await payments.balance("DOGE", SUB) == 0


@pytest.mark.asyncio
async def test_balance_failed_call_is_zero():
    payments, _, _ = make_payments()
    assert await payments.balance("ICP", b"\x01") == 0


@pytest.mark.asyncio
async def test_balance_overflow():
    payments, icp, _ = make_payments()
    icp.mint(account_id(CANISTER, SUB), 2**64)
    with pytest.raises(OverflowError):
        await payments.balance("ICP", SUB)


@pytest.mark.asyncio
async def test_icp_transfer_moves_amount_and_fee():
    payments, icp, _ = make_payments()
    icp.mint(account_id(CANISTER, SUB), 100_000)
    target = account_id(PAYER, None)
    await payments.transfer("ICP", SUB, target, 40_000)
    assert icp.account_balance(target) == 40_000
    assert icp.account_balance(account_id(CANISTER, SUB)) == 100_000 - 40_000 - 10_000


@pytest.mark.asyncio
async def test_icp_transfer_rejects_invalid_account():
    payments, icp, _ = make_payments()
    icp.mint(account_id(CANISTER, SUB), 100_000)
    with pytest.raises(LedgerError):
        await payments.transfer("ICP", SUB, b"\x00" * 31, 1)
    bad = bytearray(account_id(PAYER, None))
    bad[0] ^= 0xFF
    with pytest.raises(LedgerError):
        await payments.transfer("ICP", SUB, bytes(bad), 1)


@pytest.mark.asyncio
async def test_ckbtc_transfer_to_principal():
    payments, _, ckbtc = make_payments()
    ckbtc.mint(account_id(CANISTER, SUB), 1_000)
    await payments.transfer("CKBTC", SUB, PAYER.data, 500)
    assert ckbtc.account_balance(account_id(PAYER, None)) == 500
    assert await payments.balance("CKBTC", SUB) == 1_000 - 500 - 10


@pytest.mark.asyncio
async def test_transfer_insufficient_funds():
    payments, icp, _ = make_payments()
    icp.mint(account_id(CANISTER, SUB), 10_000)
    with pytest.raises(LedgerError):
        await payments.transfer("ICP", SUB, account_id(PAYER, None), 1)
    assert icp.account_balance(account_id(CANISTER, SUB)) == 10_000


@pytest.mark.asyncio
async def test_transfer_unsupported_token():
    payments, _, _ = make_payments()
    with pytest.raises(LedgerError, match="Unsupported token"):
        await payments.transfer("DOGE", SUB, account_id(PAYER, None), 1)


@pytest.mark.asyncio
async def test_ledger_rejects_wrong_fee():
    ledger = Ledger(CANISTER, fee=10)
    ledger.mint(account_id(CANISTER, None), 100)
    with pytest.raises(LedgerError):
        await ledger.transfer(None, account_id(PAYER, None), 5, 3)


@pytest.mark.asyncio
async def test_ledger_block_indices_increase():
    ledger = Ledger(CANISTER, fee=0)
    first = ledger.mint(account_id(CANISTER, None), 100)
    second = await ledger.transfer(None, account_id(PAYER, None), 5, 0)
    assert second == first + 1
    assert await ledger.balance_of(PAYER, None) == 5


def test_default_account_id():
    payments, _, _ = make_payments()
    assert payments.default_account_id() == account_id(CANISTER, None)