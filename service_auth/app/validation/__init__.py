"""
Inbound token validation.

- validator: Validator facade binding a validator driver, the provider
  address and client id, and the authorization rule engine.
- gate: FastAPI-facing gate that extracts the credential from a request
  (X-Auth-Token, Bearer or Basic), runs the validation chain and
  attaches the principal to the request.

Invalid credentials are client faults (401/400), rule engine refusals are
403, and provider failures are 500.
"""

from .gate import BasicAuthCache, ValidationGate, decode_basic_credentials
from .validator import Validator

__all__ = [
    "BasicAuthCache",
    "ValidationGate",
    "Validator",
    "decode_basic_credentials",
]
