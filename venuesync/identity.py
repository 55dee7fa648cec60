"""HTTP client for verifying bearer credentials with the identity provider."""

import logging
from typing import Any, Mapping, Optional

import requests

from .errors import Unauthorized
from .models import Identity


class IdentityClient:
    """
    Verifies credentials with a ``GET /account`` call.

    The provider answers with the account document of the credential's owner;
    this client reduces it to an Identity. Passwords and OAuth never pass
    through this service.
    """

    def __init__(
        self,
        endpoint: str,
        project_id: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize IdentityClient.

        Args:
            endpoint: Identity provider base URL
            project_id: Project id sent with every verification
            timeout: Request timeout in seconds
            session: requests session to reuse (a new one if omitted)
        """
        if not endpoint:
            raise ValueError("identity endpoint is required")
        self.endpoint = endpoint.rstrip("/")
        self.project_id = project_id or ""
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    @property
    def account_url(self) -> str:
        return f"{self.endpoint}/account"

    def verify(self, token: Optional[str]) -> Identity:
        """
        Resolve a bearer credential to an identity.

        Raises:
            Unauthorized: token missing, rejected, or the provider unreachable
        """
        if not token:
            raise Unauthorized("Authentication failed: token is required")

        headers = {
            "X-Appwrite-JWT": token,
            "X-Appwrite-Project": self.project_id,
            "Content-Type": "application/json",
        }
        try:
            response = self.session.get(self.account_url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            self.logger.error("Identity provider request failed: %s", e)
            raise Unauthorized("Authentication failed: verification error") from e

        if not response.ok:
            self.logger.warning("Identity verification rejected (HTTP %s)", response.status_code)
            raise Unauthorized("Authentication failed: invalid credential")

        try:
            account = response.json()
        except ValueError as e:
            self.logger.error("Identity provider returned non-JSON response")
            raise Unauthorized("Authentication failed: verification error") from e

        return self._to_identity(account)

    @staticmethod
    def _to_identity(account: Mapping[str, Any]) -> Identity:
        user_id = account.get("userId") or account.get("$id")
        if not user_id:
            raise Unauthorized("Authentication failed: account has no user id")
        role = account.get("role")
        if not role:
            labels = account.get("labels") or []
            role = "admin" if "admin" in labels else "user"
        return Identity(user_id=str(user_id), role=str(role), email=account.get("email"))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
