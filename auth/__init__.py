"""auth/ -- Multi-tenant authentication core: tokens, sessions, refresh, role switching.

AuthService (auth/service.py) is the one entry point the HTTP layers call.

Layer rule: auth/ imports only stdlib, third-party libraries and core.config.
It does NOT import from api/ or web/; those import from auth/.
"""
