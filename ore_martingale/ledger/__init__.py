"""ORE program codec, ledger RPC and account subscription."""
