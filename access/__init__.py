"""access/ -- Authorization decisions and the cached credential store.

Layer rule: access/ imports from core/ and db/. The directory is never imported
here; it is injected into AuthorizationResolver by the entry point.
"""
