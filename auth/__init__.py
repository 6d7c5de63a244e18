"""auth/ -- Authentication and authorization core for NovaSanctum.

Layer rule: auth/ imports only stdlib + third-party libraries (and, for
type hints and AuthService.from_settings, core.config). It does NOT import
from api/. api/ imports from auth/, not the other way around.
"""
