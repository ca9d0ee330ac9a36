"""
pg-table-sync: make one PostgreSQL table identical to another.

Rows are fingerprinted on both sides by primary key and an md5 of the row's
JSON form; the difference is applied to the target in a single transaction.
"""

__version__ = "0.1.0"
