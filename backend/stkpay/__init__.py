"""
STK Pay backend.

M-Pesa STK push initiation, Daraja callback reconciliation and status polling.
"""
__version__ = "0.1.0"
