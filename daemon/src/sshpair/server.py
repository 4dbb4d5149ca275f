"""HTTP API for the offerer.

Translates requests into pairing and sudo grant operations and their
results or errors into JSON. Errors carry a stable ``code`` next to the
human readable ``error``.
"""

import html
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web

from sshpair.authorized_keys import AuthorizedKeysStore
from sshpair.config import Config
from sshpair.errors import NotFoundError, SshPairError
from sshpair.install_script import (
    InstallMode,
    install_page_url,
    oneliner,
    render_install_script,
)
from sshpair.ip_provider import LocalNetworkIpProvider
from sshpair.pairing.service import PairingService
from sshpair.pairing.token_manager import TokenManager
from sshpair.qr_generator import QrGenerator
from sshpair.ssh_keys import LocalKeyReader
from sshpair.sudo import SudoGrantService, VisudoValidator

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed in window.
            window_seconds: Window size in seconds.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = {}

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed.

        Args:
            key: Rate limit key (client IP).

        Returns:
            True if request is allowed, False if rate limited.
        """
        now = time.time()
        cutoff = now - self.window_seconds

        recent = [t for t in self.requests.get(key, ()) if t > cutoff]

        if len(recent) >= self.max_requests:
            self.requests[key] = recent
            return False

        recent.append(now)
        self.requests[key] = recent
        self._prune(cutoff)
        return True

    def _prune(self, cutoff: float) -> None:
        """Forget clients with no request inside the window."""
        idle = [
            k for k, times in self.requests.items() if not times or times[-1] <= cutoff
        ]
        for k in idle:
            del self.requests[k]


def error_response(error: SshPairError) -> web.Response:
    return web.json_response(
        {"error": str(error) or error.code, "code": error.code},
        status=error.http_status,
    )


def _strict_flag(value: Any) -> bool:
    """Only an explicit true enables a flag; "false", 1 and the like do not."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class PairingServer:
    """HTTP server for the pairing API and install pages."""

    def __init__(
        self,
        pairing: PairingService,
        sudo: SudoGrantService,
        config: Config,
        ip_provider: Optional[LocalNetworkIpProvider] = None,
    ):
        """Initialize pairing server.

        Args:
            pairing: Pairing service.
            sudo: Sudo grant service.
            config: Service configuration (port, limits).
            ip_provider: Local address discovery.
        """
        self.pairing = pairing
        self.sudo = sudo
        self.config = config
        self.ip_provider = ip_provider or LocalNetworkIpProvider()
        self.ip_limiter = RateLimiter(
            max_requests=config.rate_limit.requests_per_minute, window_seconds=60
        )
        self.resolve_limiter = RateLimiter(
            max_requests=config.rate_limit.resolve_per_minute, window_seconds=60
        )
        self.app = web.Application(middlewares=[self._errors_middleware])
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        router = self.app.router
        router.add_get("/", self._handle_index)
        router.add_get("/health", self._handle_health)
        router.add_get("/api/status", self._handle_status)
        router.add_get("/api/ips", self._handle_ips)
        router.add_get("/api/qrcode", self._handle_qrcode)
        router.add_get("/api/install/{token}", self._handle_install_script)
        router.add_post("/api/pairing/{token}", self._handle_pairing)
        router.add_post("/api/grant-sudo", self._handle_grant_sudo)
        router.add_get("/api/resolve/{code}", self._handle_resolve)
        router.add_get("/api/publickey", self._handle_publickey)
        router.add_post("/api/reset", self._handle_reset)
        router.add_get("/install/{token}", self._handle_install_page)

    @web.middleware
    async def _errors_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        client_ip = request.remote or "unknown"
        if request.path.startswith("/api/") and not self.ip_limiter.is_allowed(client_ip):
            return web.json_response(
                {"error": "too many requests", "code": "rate_limited"}, status=429
            )
        try:
            return await handler(request)
        except SshPairError as e:
            logger.info(f"{request.method} {request.path} -> {e.code}")
            return error_response(e)

    def _advertised_host(self, request: web.Request) -> str:
        """Host the client reached us on, falling back to a LAN address."""
        host = request.host.rsplit(":", 1)[0] if request.host else ""
        if host and host not in ("localhost", "127.0.0.1"):
            return host
        return self.ip_provider.primary(default=host or "localhost")

    async def _read_json(self, request: web.Request) -> dict[str, Any]:
        """Request body as a dict; anything unparseable reads as empty.

        Missing fields are reported by the operation itself, after the
        token checks.
        """
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except ValueError:
            logger.debug(f"Ignoring malformed JSON body on {request.path}")
            return {}
        return body if isinstance(body, dict) else {}

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.Response(text="OK")

    async def _handle_status(self, request: web.Request) -> web.Response:
        status = await self.pairing.status()
        host = self._advertised_host(request)
        port = self.config.port
        body = status.to_dict()
        body.update(
            port=port,
            oneliner=oneliner(host, port, status.token),
            grant_oneliner=oneliner(host, port, status.token, InstallMode.GRANT),
        )
        return web.json_response(body)

    async def _handle_ips(self, request: web.Request) -> web.Response:
        addresses = [a.to_dict() for a in self.ip_provider.addresses()]
        return web.json_response({"addresses": addresses})

    async def _handle_qrcode(self, request: web.Request) -> web.Response:
        token = request.query.get("token") or self.pairing.tokens.peek().token
        link = install_page_url(self._advertised_host(request), self.config.port, token)
        png = QrGenerator(link).to_png_bytes()
        return web.Response(body=png, content_type="image/png")

    async def _handle_install_script(self, request: web.Request) -> web.Response:
        token = request.match_info["token"]
        self.pairing.tokens.check(token)
        host = request.query.get("host") or self._advertised_host(request)
        mode = InstallMode.parse(request.query.get("mode"))
        script = render_install_script(host, self.config.port, token, mode)
        return web.Response(text=script, content_type="text/x-sh", charset="utf-8")

    async def _handle_pairing(self, request: web.Request) -> web.Response:
        token = request.match_info["token"]
        body = await self._read_json(request)
        await self.pairing.submit_key(
            token,
            body.get("pubkey"),
            peer_user=_optional_str(body.get("user")),
            peer_host=_optional_str(body.get("hostname")),
        )
        return web.json_response({"ok": True})

    async def _handle_grant_sudo(self, request: web.Request) -> web.Response:
        if not self.config.sudo.enabled:
            raise NotFoundError("sudo grants are disabled")
        body = await self._read_json(request)
        token = body.get("token") or request.query.get("token")
        result = await self.sudo.request_grant(
            _optional_str(token),
            username=_optional_str(body.get("username")),
            no_password=_strict_flag(body.get("nopass")),
        )
        return web.json_response(result.to_dict())

    async def _handle_resolve(self, request: web.Request) -> web.Response:
        client_ip = request.remote or "unknown"
        if not self.resolve_limiter.is_allowed(client_ip):
            return web.json_response(
                {"error": "too many requests", "code": "rate_limited"}, status=429
            )
        token = await self.pairing.resolve(request.match_info["code"])
        return web.json_response({"token": token})

    async def _handle_publickey(self, request: web.Request) -> web.Response:
        key = await self.pairing.fetch_local_key(request.query.get("token"))
        return web.Response(text=key + "\n", content_type="text/plain", charset="utf-8")

    async def _handle_reset(self, request: web.Request) -> web.Response:
        token = await self.pairing.reset()
        return web.json_response({"ok": True, "token": token})

    async def _handle_install_page(self, request: web.Request) -> web.Response:
        token = request.match_info["token"]
        command = oneliner(self._advertised_host(request), self.config.port, token)
        page = _PAGE.format(
            title="Send your SSH public key",
            body=(
                "<p>This sends this machine's SSH public key to the offerer "
                "so they can SSH into it.</p>"
                "<ol><li>Open a terminal on this device.</li><li>Run:</li></ol>"
                f"<pre>{html.escape(command)}</pre>"
                f"<p>Token: <code>{html.escape(token)}</code></p>"
            ),
        )
        return web.Response(text=page, content_type="text/html", charset="utf-8")

    async def _handle_index(self, request: web.Request) -> web.Response:
        status = await self.pairing.status()
        host = self._advertised_host(request)
        addresses = "".join(
            f"<li>{html.escape(a.address)}:{self.config.port} ({html.escape(a.iface)})</li>"
            for a in self.ip_provider.addresses()
        )
        page = _PAGE.format(
            title="sshpair",
            body=(
                f"<p>Code: <code>{status.code}</code></p>"
                f"<p>Token: <code>{status.token}</code> "
                f"(expires in {status.expires_in}s)</p>"
                f'<img alt="QR code" src="/api/qrcode?token={status.token}">'
                "<p>On the accepter run:</p>"
                f"<pre>{html.escape(oneliner(host, self.config.port, status.token))}</pre>"
                f"<p>or <code>sshpair accept --host {html.escape(host)} "
                f"--code {status.code}</code></p>"
                f"<ul>{addresses}</ul>"
            ),
        )
        return web.Response(text=page, content_type="text/html", charset="utf-8")

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to.

        Returns:
            App runner (for cleanup).
        """
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        logger.info(f"sshpair listening on {host}:{port}")
        return runner


_PAGE = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font: 16px/1.4 system-ui, sans-serif; max-width: 800px; margin: 0 auto; padding: 1rem; }}
code, pre {{ background: #0001; padding: .3rem .4rem; border-radius: 6px; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
</body>
</html>
"""


def build_server(
    config: Config, ip_provider: Optional[LocalNetworkIpProvider] = None
) -> PairingServer:
    """Wire the pairing and sudo services from configuration."""
    pairing = PairingService(
        tokens=TokenManager(ttl_seconds=config.token_ttl),
        key_store=AuthorizedKeysStore.for_ssh_dir(config.ssh_path),
        local_key_reader=LocalKeyReader(config.ssh_path),
    )
    sudo = SudoGrantService(
        pairing,
        sudoers_dir=Path(config.sudo.sudoers_dir),
        validator=VisudoValidator(config.sudo.visudo_path),
    )
    return PairingServer(pairing, sudo, config, ip_provider=ip_provider)
