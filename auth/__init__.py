"""auth/ -- Authentication and abuse-mitigation package for AuthGuard.

Login, JWT issuance and verification, per-user lockout, per-IP backoff,
token revocation and the password reset flow.

Layer rule: auth/ imports from core/ (settings) and cache/ (counter store),
plus stdlib and third-party libraries. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
