"""auth/ -- Authentication for Shelfguard: credentials, sessions, login throttling.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or catalog/.
api/ and catalog/ import from auth/, not the other way around.
"""
