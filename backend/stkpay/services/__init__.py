"""
Payment lifecycle services.

Token cache, phone normalization, request building, the transaction ledger,
status queries and the coordinator that ties them together.
"""
