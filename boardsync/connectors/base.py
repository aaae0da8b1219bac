import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

import boardsync.log_config  # noqa: F401 - registers Logger.trace

from boardsync.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    NotFoundError,
    RemoteError,
    TransientError,
)
from boardsync.schemas.common import Platform
from boardsync.schemas.ticket import ExternalTicket, TicketDraft

log = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Abstract Base Class for the two remote ticket systems."""

    platform: Platform

    def __init__(
        self,
        base_url: str,
        api_token: str,
        project_id: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self.api_token = api_token
        self.project_id = project_id
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            follow_redirects=True,
            timeout=timeout,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_token and self.project_id)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Authenticated request against the remote API.
        Maps failures onto the RemoteError taxonomy: 401/403 are fatal for a batch,
        timeouts, connection errors and 5xx are transient.
        """
        if not path.startswith("/"):
            path = f"/{path}"
        label = self.platform.label

        try:
            log.trace(f"{label} API {method} {self.base_url}{path}")
            response = await self.client.request(method, path, headers=self.headers, **kwargs)
            log.trace(f"{label} API response: {response.status_code}")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = self._error_detail(e.response)
            log.error(f"{label} API {method} {path} failed with {status}: {detail}")
            if status == 401:
                raise AuthenticationError(label, f"Authentication failed: invalid API token ({detail})", status)
            if status == 403:
                raise AccessDeniedError(label, f"Permission denied: token lacks the required scope ({detail})", status)
            if status == 404:
                raise NotFoundError(label, f"Not found: {path}", status)
            if status == 429 or status >= 500:
                raise TransientError(label, f"Server error {status}: {detail}", status)
            raise RemoteError(label, f"Request failed with {status}: {detail}", status)
        except httpx.TimeoutException as e:
            log.warning(f"{label} API {method} {path} timed out: {e}")
            raise TransientError(label, f"Request timed out: {method} {path}")
        except httpx.RequestError as e:
            log.warning(f"{label} API {method} {path} connection error: {e}")
            raise TransientError(label, f"Connection error: {e}")

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:500]
        if isinstance(payload, dict):
            errors = payload.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                return errors[0].get("message", str(errors[0]))
            return payload.get("error_description") or payload.get("error") or str(payload)
        return str(payload)

    @abstractmethod
    async def fetch_tickets(self) -> List[ExternalTicket]:
        """Fetches every ticket of the configured project."""
        pass

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> ExternalTicket:
        pass

    @abstractmethod
    async def create_ticket(self, draft: TicketDraft) -> ExternalTicket:
        pass

    @abstractmethod
    async def update_ticket(self, ticket_id: str, changes: Dict[str, Any]) -> None:
        """Apply canonical field changes: 'title', 'description', 'status', 'subsystem', 'tags'."""
        pass

    @abstractmethod
    async def delete_ticket(self, ticket_id: str) -> None:
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Raises AuthenticationError / AccessDeniedError when the credentials are unusable."""
        pass

    async def close(self) -> None:
        await self.client.aclose()
