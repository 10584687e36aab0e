"""auth/ -- Identity core for the user service.

Registration, credential storage, derived account identifiers, and the
server-side session registry that makes issued JWTs revocable.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
