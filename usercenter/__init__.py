"""In-process user registry with profiles, invite codes, paid space creation and order tracking."""

__version__ = "0.1.0"
__all__ = ["models", "utils", "ledger", "store", "service"]