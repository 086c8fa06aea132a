"""Wallet ledger and trade settlement.

Balance invariants, trade settlement, deposit addresses and admin codes.
"""

from .addresses import AddressGenerator, AddressProvisioner, RandomAddressGenerator
from .admin_codes import AdminCodes
from .authz import RoleChecker
from .config import LedgerConfig
from .settlement import TradeSettlement
from .wallet import WalletLedger

__all__ = [
    # Wallet
    "WalletLedger",
    "LedgerConfig",
    # Settlement
    "TradeSettlement",
    # Addresses
    "AddressGenerator",
    "AddressProvisioner",
    "RandomAddressGenerator",
    # Admin
    "AdminCodes",
    "RoleChecker",
]
