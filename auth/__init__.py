"""auth/ -- Authentication and session-token package for AuthGate.

Layer rule: auth/ imports only stdlib + third-party libraries (and core/ for
Settings type hints). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
