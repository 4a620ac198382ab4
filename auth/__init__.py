"""auth/ -- Credential and token lifecycle for the auth service.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration arrives through
constructor arguments; api/ imports from auth/, not the other way around.
"""
