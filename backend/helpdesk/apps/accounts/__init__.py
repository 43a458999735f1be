"""Accounts package.

Only the identity rows the training engine references live here; login,
sessions and password handling belong to the auth service.
"""
