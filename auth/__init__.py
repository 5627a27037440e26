"""auth/ -- Account identity resolution core.

Credential store, password verifier, external identity resolver, and the
session manager. Every component returns a value or an AuthFailure; none of
them knows about HTTP responses.

Layer rule: auth/ imports only stdlib, third-party libraries and core.config.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
