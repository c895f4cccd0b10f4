"""
Session Manager - service discovery and authentication state machine

States:
    UNAUTHENTICATED -> SERVICE_DISCOVERED -> AUTHENTICATED

A failed step leaves the state where it was. Every inventory or metric call
goes through require_authenticated(), which fails without network I/O.
"""

import logging
import threading
from typing import Any, Dict, Optional

from vim_telemetry.errors import ConfigError, ProtocolError, SessionError, VimApiError
from vim_telemetry.invoker import SoapResponse, invoke
from vim_telemetry.models import ObjectRef, SessionState
from vim_telemetry.soap_requests import (
    LoginParams,
    LogoutParams,
    RetrieveServiceContentParams,
    make_params,
)
from vim_telemetry.transcoder import ref_of

logger = logging.getLogger(__name__)

# Service endpoints every later call depends on
REQUIRED_SERVICES = ("propertyCollector", "perfManager", "rootFolder")

DEFAULT_SESSION_MANAGER = ObjectRef(kind="SessionManager", id="SessionManager")


def extract_session_cookie(headers) -> Optional[str]:
    """
    Session token from a Set-Cookie response header.

    Only the name=value pair is kept; cookie attributes (Path, HttpOnly...)
    are not sent back.
    """
    if not headers:
        return None
    raw = headers.get("Set-Cookie")
    if not raw:
        return None
    token = raw.split(";", 1)[0].strip()
    return token or None


class SessionManager:
    """
    Holds the server-side references and cookie for one vSphere session.

    Thread-safe: state transitions are serialized with a lock.
    """

    def __init__(self, transport):
        """
        Args:
            transport: PacedTransport used for every call of this session
        """
        self.transport = transport
        self.state = SessionState.UNAUTHENTICATED
        self.services: Dict[str, ObjectRef] = {}
        self.about: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def cookie(self) -> Optional[str]:
        return self.transport.cookie

    def require_authenticated(self):
        if self.state != SessionState.AUTHENTICATED:
            raise SessionError("Must log in before issuing commands")

    def service(self, name: str) -> ObjectRef:
        try:
            return self.services[name]
        except KeyError:
            raise SessionError(f"Service endpoint '{name}' is not known; discover the service first")

    def discover_service(self) -> SoapResponse:
        """
        Fetch the ServiceContent and record the endpoint references.

        Raises:
            ProtocolError: Response lacks the required service references
        """
        with self._lock:
            response = invoke(self.transport, "RetrieveServiceContent", RetrieveServiceContentParams())

            content = response.returnval
            if not isinstance(content, dict):
                raise ProtocolError("RetrieveServiceContent response has no returnval")

            services: Dict[str, ObjectRef] = {}
            for key, value in content.items():
                if isinstance(value, dict) and "@" in value and "type" in value["@"]:
                    ref = ref_of(value)
                    if ref is not None:
                        services[key] = ref

            missing = [name for name in REQUIRED_SERVICES if name not in services]
            if missing:
                raise ProtocolError(f"Service content is missing: {', '.join(missing)}")

            self.services = services
            about = content.get("about")
            self.about = about if isinstance(about, dict) else {}
            if self.state == SessionState.UNAUTHENTICATED:
                self.state = SessionState.SERVICE_DISCOVERED

            logger.info(f"Discovered vSphere service: {self.about.get('fullName', 'unknown version')}")
            return response

    def login(self, username: str, password: str) -> SoapResponse:
        """
        Authenticate and attach the session cookie to the transport.

        Raises:
            ConfigError: Username or password empty
            SessionError: Login rejected or no session cookie returned
        """
        if not username or not password:
            raise ConfigError("Must set URL, Username, and Password")

        with self._lock:
            if self.state == SessionState.UNAUTHENTICATED:
                try:
                    self.discover_service()
                except VimApiError as e:
                    raise type(e)(f"From discover_service(): {e.message}",
                                  fault_type=e.fault_type, status_code=e.status_code) from e

            params = make_params(
                LoginParams,
                session_manager=self.services.get("sessionManager", DEFAULT_SESSION_MANAGER),
                user_name=username,
                password=password,
            )
            response = invoke(self.transport, "Login", params)

            cookie = extract_session_cookie(response.headers)
            if not cookie:
                raise SessionError("Session cookie not found during login.")

            self.transport.set_cookie(cookie)
            self.state = SessionState.AUTHENTICATED
            logger.info(f"Logged in to vSphere as {username}")
            return response

    def logout(self) -> Optional[SoapResponse]:
        """End the server session; the service references stay valid."""
        with self._lock:
            if self.state != SessionState.AUTHENTICATED:
                return None
            params = make_params(
                LogoutParams,
                session_manager=self.services.get("sessionManager", DEFAULT_SESSION_MANAGER),
            )
            try:
                return invoke(self.transport, "Logout", params)
            finally:
                self.transport.set_cookie(None)
                self.state = SessionState.SERVICE_DISCOVERED
                logger.info("Logged out of vSphere")
