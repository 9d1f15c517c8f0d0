import logging
import threading
from typing import Optional

import requests

from shared.errors import (
    ApiError, AuthenticationFailed, DependencyUnavailable, Unauthorized
)

logger = logging.getLogger(__name__)


class CredentialedClient:
    """
    Calls the tournament service with a bearer credential for the automation
    principal.

    The credential is acquired lazily and shared by every caller in the
    process. A 401 drops it and fails the current call; the next call (on
    the next scheduled tick) logs in again. Nothing is retried in-line.
    """

    def __init__(
        self,
        auth_url: str,
        service_url: str,
        identifier: str,
        password: str,
        timeout: float = 10.0,
        session: requests.Session = None
    ):
        self.auth_url = auth_url.rstrip('/')
        self.service_url = service_url.rstrip('/')
        self.identifier = identifier
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_lock = threading.Lock()

    @classmethod
    def from_config(cls, cfg, session: requests.Session = None) -> "CredentialedClient":
        return cls(
            auth_url=cfg.AUTH_SERVICE_URL,
            service_url=cfg.TOURNAMENT_SERVICE_URL,
            identifier=cfg.SYSTEM_USER_IDENTIFIER,
            password=cfg.SYSTEM_USER_PASSWORD,
            timeout=cfg.REQUEST_TIMEOUT,
            session=session
        )

    @property
    def has_token(self) -> bool:
        return self._token is not None

    # ==================== Credential ====================

    def login(self) -> str:
        """Acquire a fresh token from the auth service and hold it."""
        url = f"{self.auth_url}/api/auth/login"
        try:
            resp = self.session.post(
                url,
                json={'identifier': self.identifier, 'password': self.password},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(f"Auth service unreachable: {e}")

        if resp.status_code >= 500:
            logger.error(f"Auth service error during login ({resp.status_code})")
            raise DependencyUnavailable(f"Auth service returned status {resp.status_code}")

        body = _json_or_empty(resp)
        data = body.get('data')
        token = data.get('token') if isinstance(data, dict) else None
        if resp.status_code != 200 or not body.get('success') or not token:
            message = body.get('message')
            logger.error(f"Authentication failed ({resp.status_code}): {message}")
            raise AuthenticationFailed(message or f"Login rejected with status {resp.status_code}")

        self._token = token
        logger.info("Authentication token obtained successfully")
        return token

    def _ensure_token(self) -> str:
        token = self._token
        if token is not None:
            return token
        with self._token_lock:
            # Another caller may have logged in while we waited for the lock
            if self._token is None:
                self.login()
            return self._token

    def clear_token(self, token: str = None):
        """Drop the held token; with ``token`` only if it is still the one held."""
        with self._token_lock:
            if token is None or self._token == token:
                self._token = None

    # ==================== Calls ====================

    def call(self, method: str, path: str, json: dict = None, params: dict = None) -> dict:
        token = self._ensure_token()
        url = f"{self.service_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(f"{method} {path} failed: {e}")

        if resp.status_code == 401:
            self.clear_token(token)
            logger.info("Authentication token rejected, will re-authenticate on next run")
            raise Unauthorized(f"{method} {path} was rejected as unauthorized")

        body = _json_or_empty(resp)
        if not 200 <= resp.status_code < 300:
            raise ApiError(resp.status_code, body.get('error'), body.get('message'))
        return body

    def get(self, path: str, params: dict = None) -> dict:
        return self.call('GET', path, params=params)

    def post(self, path: str, json: dict = None) -> dict:
        return self.call('POST', path, json=json)

    # ==================== Liveness ====================

    def probe(self, base_url: str) -> str:
        """Unauthenticated GET {base_url}/health -> connected / disconnected / error."""
        try:
            resp = self.session.get(f"{base_url.rstrip('/')}/health", timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout):
            return 'disconnected'
        except requests.exceptions.RequestException:
            return 'error'
        return 'connected' if resp.status_code == 200 else 'error'

    def close(self):
        self.session.close()


def _json_or_empty(resp) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
