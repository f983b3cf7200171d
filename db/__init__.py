"""db/ -- Database access: pooled client, startup readiness guard, schema bootstrap.

Layer rule: db/ imports from core/ only.
"""
