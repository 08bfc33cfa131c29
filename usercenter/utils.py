"""Paging and account-derivation helpers."""

from __future__ import annotations

import hashlib
import zlib

from usercenter.models import Principal

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100
_SUBACCOUNT_LEN = 32


def check_page_size(page: int, size: int) -> tuple[int, int]:
    """Normalise a page number and page size to usable values."""
    page = page if page > 0 else 1
    size = size if 0 < size <= _MAX_PAGE_SIZE else _DEFAULT_PAGE_SIZE
    return page, size


def _with_checksum(digest: bytes) -> bytes:
    return zlib.crc32(digest).to_bytes(4, "big") + digest


def generate_order_subaccount(caller: Principal, payid: int) -> bytes:
    """Derive the 32-byte subaccount that receives payment for an order."""
    hasher = hashlib.sha224()
    hasher.update(b"\x0a")
    hasher.update(b"payid")
    hasher.update(payid.to_bytes(8, "big"))
    hasher.update(caller.data)
    return _with_checksum(hasher.digest())


def account_id(principal: Principal, subaccount: bytes | None = None) -> bytes:
    """Compute the 32-byte ledger account identifier of a principal's subaccount."""
    if subaccount is None:
        subaccount = bytes(_SUBACCOUNT_LEN)
    elif len(subaccount) != _SUBACCOUNT_LEN:
        raise ValueError(
            f"subaccount must be {_SUBACCOUNT_LEN} bytes, got {len(subaccount)}"
        )
    hasher = hashlib.sha224()
    hasher.update(b"\x0aaccount-id")
    hasher.update(principal.data)
    hasher.update(bytes(subaccount))
    return _with_checksum(hasher.digest())