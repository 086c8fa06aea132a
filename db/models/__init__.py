"""SQLAlchemy models for the ledger database."""

from db.models.ledger import AdminCodeRow, Base, TradeRow, UserRoleRow, WalletAddressRow, WalletRow

__all__ = ["AdminCodeRow", "Base", "TradeRow", "UserRoleRow", "WalletAddressRow", "WalletRow"]
