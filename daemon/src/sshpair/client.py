"""Accepter side client for the offerer's HTTP API."""

import logging
from typing import Any, Optional

import aiohttp

from sshpair.errors import ClientError, InvalidFormatError
from sshpair.install_script import base_url
from sshpair.pairing.code import CODE_LENGTH

logger = logging.getLogger(__name__)


class PairingClient:
    """Talks to a running sshpair service.

    Usage:
        async with PairingClient("192.168.1.10", 4321) as client:
            token = await client.resolve("1a2b3c4d")
            await client.submit_key(token, pubkey, "alice", "laptop")
    """

    def __init__(
        self,
        host: str,
        port: int,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url(host, port)
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "PairingClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._session is None:
            raise RuntimeError("PairingClient used outside 'async with'")
        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                is_json = resp.content_type == "application/json"
                payload = await resp.json() if is_json else await resp.text()
                if resp.status >= 400:
                    message, code = f"{method} {path} -> {resp.status}", None
                    if isinstance(payload, dict):
                        message = payload.get("error", message)
                        code = payload.get("code")
                    raise ClientError(message, status=resp.status, code=code)
                return payload
        except aiohttp.ClientError as e:
            raise ClientError(f"cannot reach {self.base_url}: {e}")

    async def status(self) -> dict[str, Any]:
        return await self._request("GET", "/api/status")

    async def resolve(self, code: str) -> str:
        """Resolve a relay code to the offerer's current token."""
        code = code.strip()
        if len(code) != CODE_LENGTH:
            raise InvalidFormatError(f"code must be {CODE_LENGTH} characters")
        data = await self._request("GET", f"/api/resolve/{code}")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ClientError("failed to resolve code to token")
        return token

    async def token_for(self, code: Optional[str], token: Optional[str]) -> str:
        """Use ``token`` if given, otherwise resolve ``code``."""
        if token:
            return token
        if not code:
            raise InvalidFormatError("pass a token or a code")
        return await self.resolve(code)

    async def submit_key(
        self, token: str, pubkey: str, user: str, hostname: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/pairing/{token}",
            json={"pubkey": pubkey, "user": user, "hostname": hostname},
        )

    async def fetch_public_key(self, token: str) -> str:
        text = await self._request("GET", "/api/publickey", params={"token": token})
        if not isinstance(text, str) or not text.strip():
            raise ClientError("unexpected public key response")
        return text.strip()

    async def grant_sudo(
        self, token: str, username: Optional[str] = None, no_password: bool = False
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"token": token, "nopass": no_password}
        if username:
            body["username"] = username
        return await self._request("POST", "/api/grant-sudo", json=body)

    async def reset(self) -> str:
        data = await self._request("POST", "/api/reset")
        return data["token"]
