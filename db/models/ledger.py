"""SQLAlchemy models for the wallet ledger tables.

- wallets
- trades
- wallet_addresses
- user_roles
- admin_codes
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Text, func
from sqlalchemy.orm import DeclarativeBase

# Fixed-point integers in units of 1e-8 (core.types.AMOUNT_PLACES). Integer
# arithmetic keeps balance guards exact on every backend, SQLite included.
AMOUNT = BigInteger


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WalletRow(Base):
    """One USD balance per user.

    Table: wallets
    """

    __tablename__ = "wallets"

    user_id = Column(Text, primary_key=True)
    balance_units = Column(AMOUNT, nullable=False)
    last_bonus_claim_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<WalletRow(user_id={self.user_id}, balance_units={self.balance_units})>"


class TradeRow(Base):
    """Append-only trade ledger.

    Table: trades
    """

    __tablename__ = "trades"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False)
    coin_id = Column(Text, nullable=False)
    coin_symbol = Column(Text, nullable=True)
    coin_name = Column(Text, nullable=True)
    trade_type = Column(Text, nullable=False)  # buy|sell
    quantity_units = Column(AMOUNT, nullable=False)
    price_units = Column(AMOUNT, nullable=False)
    total_units = Column(AMOUNT, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_trades_user_coin", "user_id", "coin_id"),
        Index("idx_trades_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TradeRow(id={self.id}, {self.trade_type} {self.quantity_units} {self.coin_id} @ {self.price_units})>"


class WalletAddressRow(Base):
    """Deposit address per (user, currency).

    Table: wallet_addresses
    """

    __tablename__ = "wallet_addresses"

    user_id = Column(Text, primary_key=True)
    currency = Column(Text, primary_key=True)
    address = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class UserRoleRow(Base):
    """Table: user_roles"""

    __tablename__ = "user_roles"

    user_id = Column(Text, primary_key=True)
    role = Column(Text, primary_key=True)  # admin|user
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AdminCodeRow(Base):
    """Single-use codes that grant the admin role.

    Table: admin_codes
    """

    __tablename__ = "admin_codes"

    code = Column(Text, primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    used_by = Column(Text, nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
