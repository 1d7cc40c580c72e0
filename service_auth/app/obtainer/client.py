"""
Ticket client: one principal's credentials and the token last obtained for them.

State machine::

    UNOBTAINED --obtain--> OBTAINED --renew--> OBTAINED --delete--> DELETED

A failed obtain leaves the client UNOBTAINED; a failed renew or delete leaves
the stored session credential and token untouched.

The client has no internal locking. Concurrent obtain/renew calls on one
instance must be serialized by the caller (one client per logical session,
or an external lock), otherwise the stored session credential and token can
end up belonging to different exchanges.
"""

from enum import Enum
from typing import Optional

from shared.errors import AuthLayerException
from shared.logging import fingerprint, get_logger
from shared.metrics import MetricsCollector
from ..drivers.base import ObtainerDriver, SessionCredential, TicketGrant
from ..drivers.registry import DriverRegistry


class TicketState(str, Enum):
    """Ticket client lifecycle states."""
    UNOBTAINED = "unobtained"
    OBTAINED = "obtained"
    DELETED = "deleted"


class TicketClient:
    """Obtains, renews and deletes tokens for one set of credentials."""

    def __init__(self, driver: ObtainerDriver, server_addr: str, username: str, password: str,
                 service_id: str, metrics: Optional[MetricsCollector] = None):
        self.driver = driver
        self.server_addr = server_addr
        self.username = username
        self._password = password
        self.service_id = service_id
        self.metrics = metrics
        self.logger = get_logger("auth.ticket_client")

        self._session: Optional[SessionCredential] = None
        self._token: str = ""
        self._state = TicketState.UNOBTAINED

    @classmethod
    def from_conf(cls, conf, registry: DriverRegistry,
                  metrics: Optional[MetricsCollector] = None) -> "TicketClient":
        """Build a client from an ObtainerConf."""
        conf.check()
        return cls(
            driver=registry.obtainer(conf.provider),
            server_addr=conf.provider_url,
            username=conf.username,
            password=conf.password,
            service_id=conf.client_id,
            metrics=metrics,
        )

    @property
    def state(self) -> TicketState:
        return self._state

    @property
    def token(self) -> str:
        """The current token, empty until a successful obtain or renew."""
        return self._token

    def _check_not_deleted(self) -> None:
        if self._state is TicketState.DELETED:
            raise RuntimeError("ticket client has been deleted")

    def _record(self, operation: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_ticket_operation(self.driver.name, operation, outcome)

    async def _login_and_request(self) -> TicketGrant:
        session = await self.driver.login(self.server_addr, self.username, self._password, self.service_id)
        return await self.driver.request_ticket(self.server_addr, session, self.service_id)

    def _store(self, grant: TicketGrant) -> str:
        self._session = grant.session
        self._token = grant.token
        self._state = TicketState.OBTAINED
        return self._token

    async def obtain(self) -> str:
        """Log in, request a ticket and store both."""
        self._check_not_deleted()
        try:
            grant = await self._login_and_request()
        except AuthLayerException as exc:
            self._record("obtain", "error")
            self.logger.warning("Unable to obtain ticket", username=self.username, error=exc.message)
            raise

        self._record("obtain", "ok")
        self.logger.info("Ticket obtained", username=self.username, token=fingerprint(grant.token))
        return self._store(grant)

    async def ensure_token(self) -> str:
        """Return the current token, obtaining one first if there is none."""
        if self._token:
            return self._token
        return await self.obtain()

    async def renew(self) -> str:
        """Request a new ticket with the stored session credential.

        When that fails (typically because the session credential expired)
        the client logs in again once and requests a ticket with the new
        session credential. There is no further retry.
        """
        self._check_not_deleted()
        if self._session is not None:
            try:
                grant = await self.driver.request_ticket(self.server_addr, self._session, self.service_id)
            except AuthLayerException as exc:
                self.logger.info("Session credential failed, logging in again",
                                 username=self.username, error=exc.message)
            else:
                self._record("renew", "ok")
                self.logger.info("Ticket renewed", username=self.username, token=fingerprint(grant.token))
                return self._store(grant)

        try:
            grant = await self._login_and_request()
        except AuthLayerException as exc:
            self._record("renew", "error")
            self.logger.warning("Unable to renew ticket", username=self.username, error=exc.message)
            raise

        self._record("renew", "relogin")
        self.logger.info("Ticket renewed after login", username=self.username, token=fingerprint(grant.token))
        return self._store(grant)

    async def delete(self) -> None:
        """Expire the session credential at the provider and forget it."""
        if self._state is TicketState.DELETED:
            return
        if self._session is not None:
            try:
                await self.driver.logout(self.server_addr, self._session)
            except AuthLayerException as exc:
                self._record("delete", "error")
                self.logger.warning("Unable to delete ticket", username=self.username, error=exc.message)
                raise
            self._record("delete", "ok")

        self._session = None
        self._token = ""
        self._state = TicketState.DELETED
        self.logger.info("Ticket deleted", username=self.username)
