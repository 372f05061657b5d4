"""vCenter connections shared by all phases of a run.

One VCenterSession per run, created lazily by the first phase that needs
vCenter and cached in the orchestrator context under '_vcenter' (private
keys are left out of reports and saved context).
"""

import logging
from typing import Any, Optional

from vcenter.inventory import connect_pbm, connect_service_instance, disconnect_service_instance
from vcenter.rest import ApiError, RestClient

logger = logging.getLogger(__name__)

CONTEXT_KEY = '_vcenter'


class VCenterSession:
    """Lazily opened SOAP, SPBM and REST connections to one vCenter."""

    def __init__(self, server: str, username: str, password: str, verify_ssl: bool = False):
        self.server = server
        self.username = username
        self._password = password
        self.verify_ssl = verify_ssl
        self._si: Optional[Any] = None
        self._pbm: Optional[Any] = None
        self._rest: Optional[RestClient] = None

    @property
    def si(self) -> Any:
        if self._si is None:
            self._si = connect_service_instance(
                self.server, self.username, self._password, verify_ssl=self.verify_ssl
            )
            logger.info(f"Connected to vSphere API on {self.server}")
        return self._si

    @property
    def content(self) -> Any:
        return self.si.RetrieveContent()

    @property
    def pbm(self) -> Any:
        if self._pbm is None:
            self._pbm = connect_pbm(self.si, verify_ssl=self.verify_ssl)
        return self._pbm

    @property
    def rest(self) -> RestClient:
        if self._rest is None:
            self._rest = RestClient(
                self.server, self.username, self._password, verify_ssl=self.verify_ssl
            )
        return self._rest

    def close(self) -> None:
        """Close every open connection."""
        if self._rest is not None:
            self._rest.logout()
            self._rest = None
        if self._si is not None:
            try:
                disconnect_service_instance(self._si)
            except Exception as e:
                logger.debug(f"Disconnect from {self.server} failed: {e}")
            self._si = None
        self._pbm = None


def get_session(config, context: dict) -> VCenterSession:
    """Return the run's VCenterSession, creating it on first use."""
    session = context.get(CONTEXT_KEY)
    if session is None:
        vc = config.infrastructure.vcenter
        session = VCenterSession(vc.server, vc.username, vc.password, verify_ssl=vc.verify_ssl)
        context[CONTEXT_KEY] = session
    return session


def close_session(context: dict) -> None:
    """Close and forget the run's VCenterSession, if any."""
    session = context.pop(CONTEXT_KEY, None)
    if session is not None:
        session.close()
        logger.debug("vCenter session closed")


__all__ = [
    'ApiError',
    'RestClient',
    'VCenterSession',
    'get_session',
    'close_session',
]
