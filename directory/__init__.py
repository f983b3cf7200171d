"""directory/ -- Identity directory client (Azure AD through Microsoft Graph).

Layer rule: directory/ imports from core/ only.
"""
