"""OAuth credential state for the Netatmo connector."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError

from connectors.base import AuthorizationError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OAuthCredentials:
    access_token: str
    refresh_token: str
    client_id: str
    client_secret: str
    expires_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    expires_in: int
    refresh_token: str


class CredentialStore:
    """Owns the mutable credential state shared by every poll of one provider.

    The state is only replaced inside :meth:`refresh`, which holds a lock for
    the whole read-check-exchange-write sequence.
    """

    def __init__(
        self,
        credentials: OAuthCredentials,
        token_url: str,
        clock: Clock = _utcnow,
        expiry_leeway: timedelta = timedelta(seconds=30),
    ) -> None:
        self._credentials = credentials
        self.token_url = token_url
        self._clock = clock
        self._expiry_leeway = expiry_leeway
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def credentials(self) -> OAuthCredentials:
        return self._credentials

    @property
    def access_token(self) -> str:
        return self._credentials.access_token

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.access_token}"}

    def is_expired(self) -> bool:
        expires_at = self._credentials.expires_at
        if expires_at is None:
            return False
        return self._clock() >= expires_at - self._expiry_leeway

    async def refresh(self, client: httpx.AsyncClient, stale_access_token: str) -> None:
        """Exchange the refresh token for a new access token.

        ``stale_access_token`` is the token the caller saw rejected. When
        another poll has already replaced it, no second exchange is made.
        """
        async with self._lock:
            if self._credentials.access_token != stale_access_token:
                logger.debug("Access token already refreshed by a concurrent poll.")
                return

            current = self._credentials
            response = await client.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": current.refresh_token,
                    "client_id": current.client_id,
                    "client_secret": current.client_secret,
                },
            )
            if response.status_code >= 400:
                raise AuthorizationError(
                    f"Failed to refresh access token (HTTP {response.status_code})."
                )
            try:
                token = TokenResponse.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                raise AuthorizationError("Token endpoint returned an invalid payload.") from exc

            self._credentials = replace(
                current,
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                expires_at=self._clock() + timedelta(seconds=token.expires_in),
            )
            self.refresh_count += 1
            logger.info(
                "Refreshed access token.",
                extra={"status_code": response.status_code},
            )
