"""Pydantic models for payments, callbacks and ledger records."""
