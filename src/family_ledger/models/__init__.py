"""
Data models for Family Ledger.

This package contains Pydantic models for request/response validation and the document shapes managers return.
"""
