"""
Outbound side: obtaining tokens and attaching them to requests.
"""

from .client import TicketClient, TicketState
from .invoker import AuthenticatedInvoker, http_request

__all__ = [
    "AuthenticatedInvoker",
    "TicketClient",
    "TicketState",
    "http_request",
]
