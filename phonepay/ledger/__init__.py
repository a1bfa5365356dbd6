"""Customer balances and the payment ledger."""
