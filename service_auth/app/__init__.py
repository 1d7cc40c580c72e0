"""
Auth service package.

Both halves of the auth middleware live here:

- app.drivers: CAS and Keycloak drivers and the registry that names them.
- app.obtainer: Ticket client and the authenticated request invoker used
  for outbound calls.
- app.validation: Validator facade and the inbound validation gate.
- app.config: Settings for the validator and obtainer.
- app.main: FastAPI application exposing token verification.

Importing the package performs no network calls; all IO happens in
route handlers or in explicit driver calls.
"""
