"""Polymarket copy trader: mirrors target wallets' activity onto a paper ledger or the CLOB."""
