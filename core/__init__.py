"""Core domain modules.

- ledger: wallet balances, trade settlement, deposit addresses, admin codes
- market_data: reference prices (CoinGecko)
- persistence: persistence boundary (interfaces)
- storage: concrete persistence implementations (in-memory, SQL)
- errors: rejection and failure taxonomy
- types: shared immutable records
"""
