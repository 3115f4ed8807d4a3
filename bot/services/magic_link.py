"""Magic-link client - sends sign-in emails and verifies access tokens (Supabase GoTrue)."""
import logging
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class MagicLinkClient:
    """Client for the auth REST API used to email magic links."""

    def __init__(self, api_url: str, api_key: str, redirect_base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize magic-link client."""
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.redirect_base_url = redirect_base_url.rstrip("/")
        self.headers = {
            "apikey": api_key,
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=httpx.Timeout(15.0),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )

    async def close(self) -> None:
        """Close underlying HTTP resources."""
        try:
            await self._client.aclose()
        except Exception as e:
            logger.debug(f"Error closing magic-link client: {e}")

    def build_redirect_url(self, telegram_id: int, username: Optional[str] = None, first_name: Optional[str] = None) -> str:
        """Verification page URL carrying the chat identity as literal query params."""
        params = {
            "telegram_id": str(telegram_id),
            "username": username or "",
            "first_name": first_name or "",
        }
        return f"{self.redirect_base_url}/verify?{urlencode(params)}"

    async def send_magic_link(
        self,
        email: str,
        telegram_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> bool:
        """
        Ask the auth service to email a sign-in link.

        Returns:
            True if the service accepted the request, False otherwise
        """
        url = f"{self.api_url}/auth/v1/otp"
        payload = {
            "email": email,
            "create_user": True,
            "data": {
                "telegram_id": telegram_id,
                "telegram_username": username,
                "telegram_first_name": first_name,
            },
        }
        params = {"redirect_to": self.build_redirect_url(telegram_id, username, first_name)}

        try:
            response = await self._client.post(url, json=payload, params=params)
            response.raise_for_status()
            logger.info(f"Magic link requested for telegram_id={telegram_id}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to send magic link for telegram_id={telegram_id}: {e}")
            return False

    async def verify_access_token(self, access_token: str) -> Optional[Dict]:
        """
        Resolve an access token to the auth user it was issued for.

        Returns:
            User dict (its "email" may be missing) or None for an invalid/expired token
        """
        url = f"{self.api_url}/auth/v1/user"
        try:
            response = await self._client.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            logger.error(f"Token verification request failed: {e}")
            raise

        if response.status_code in (401, 403):
            return None
        response.raise_for_status()
        return response.json()
