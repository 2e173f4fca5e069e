"""Outbound webhook action with SSRF protection.

Only http/https URLs are called. Hosts that are, spell, or resolve to
loopback, link-local, unspecified, reserved or private addresses are
refused before any connection is attempted, and the whole request runs
under one deadline.
"""

import asyncio
import ipaddress
import socket
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import httpx
import structlog

from actions.base import ActionServices, BaseAction
from actions.schemas import WebhookCallConfig
from core.constants import ActionType
from core.exceptions import ActionError, UnsafeUrlError, WebhookTimeoutError
from workflow.templating import interpolate_object, interpolate_template

logger = structlog.get_logger(__name__)

BLOCKED_HOSTS = frozenset({"localhost", "127.0.0.1", "0.0.0.0", "::1"})
BLOCKED_PREFIXES = ("169.254.", "10.", "192.168.") + tuple(f"172.{n}." for n in range(16, 32))

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(hostname: str) -> Optional[IPAddress]:
    """The address a literal host stands for, or None for a name.

    Accepts the IPv4 shorthands the system resolver understands
    (``127.1``, ``2130706433``, ``0x7f000001``, ``0177.0.0.1``).
    """
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        try:
            ip = ipaddress.IPv4Address(socket.inet_aton(hostname))
        except (OSError, ValueError):
            return None
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _is_internal_ip(ip: IPAddress) -> bool:
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def validate_webhook_url(url: str) -> str:
    """Return the URL unchanged or raise UnsafeUrlError.

    Blocks:
    - non-HTTP(S) schemes
    - localhost, 127.0.0.0/8, 0.0.0.0, ::1 in any spelling
    - 169.254.0.0/16 (link-local)
    - 10.0.0.0/8, 172.16.0.0/12, 192.168.0.0/16
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        raise UnsafeUrlError(f"Invalid URL: {e}") from e

    if parsed.scheme.lower() not in ("http", "https"):
        raise UnsafeUrlError(
            f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed."
        )

    hostname = (parsed.hostname or "").lower().rstrip(".")
    if not hostname:
        raise UnsafeUrlError("URL must have a valid hostname")

    if hostname in BLOCKED_HOSTS or hostname.startswith(BLOCKED_PREFIXES):
        raise UnsafeUrlError(f"Requests to internal address {hostname} are not allowed")

    ip = _parse_ip(hostname)
    if ip is not None and _is_internal_ip(ip):
        raise UnsafeUrlError(f"Requests to internal address {hostname} are not allowed")

    return url.strip()


async def _resolve_host(hostname: str) -> list[str]:
    infos = await asyncio.get_running_loop().getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


async def ensure_public_host(url: str) -> None:
    """Resolve a named host and refuse it if any address is internal."""
    hostname = (urlparse(url).hostname or "").lower().rstrip(".")
    if _parse_ip(hostname) is not None:
        return

    try:
        addresses = await _resolve_host(hostname)
    except OSError as e:
        raise ActionError(
            f"Could not resolve webhook host {hostname}: {e}", action_type=ActionType.WEBHOOK_CALL.value
        ) from e
    if not addresses:
        raise ActionError(
            f"Could not resolve webhook host {hostname}", action_type=ActionType.WEBHOOK_CALL.value
        )

    for address in addresses:
        # Drop an IPv6 zone index such as fe80::1%eth0
        ip = _parse_ip(address.split("%", 1)[0])
        if ip is None or _is_internal_ip(ip):
            logger.warning("Webhook host resolves to internal address", hostname=hostname, address=address)
            raise UnsafeUrlError(f"Requests to internal address {hostname} are not allowed")


class WebhookCallAction(BaseAction):
    """Call an external HTTP endpoint.

    Config:
        url: Target URL (templated)
        method: GET, POST, PUT, PATCH, DELETE (default: POST)
        headers: Extra headers (values templated)
        body_template: JSON text with {{placeholders}}
        output_field: Also expose the response body under this key
        timeout_ms: Deadline for the whole call (default 10s, capped at 30s)

    A non-2xx response is not an error; it is returned with
    ``success: false`` and the status code. Timeouts raise
    WebhookTimeoutError.
    """

    action_type = ActionType.WEBHOOK_CALL
    display_name = "Call Webhook"
    config_model = WebhookCallConfig

    async def execute(self, config: WebhookCallConfig, ctx: Dict[str, Any], services: ActionServices):
        url = validate_webhook_url(interpolate_template(config.url, ctx))
        await ensure_public_host(url)

        settings = services.settings
        timeout_ms = min(
            config.timeout_ms or settings.WEBHOOK_DEFAULT_TIMEOUT_MS,
            settings.WEBHOOK_MAX_TIMEOUT_MS,
        )

        headers = {"Content-Type": "application/json"}
        headers.update(interpolate_object(config.headers, ctx))

        content = None
        if config.body_template and config.method != "GET":
            content = interpolate_template(config.body_template, ctx)

        logger.info("Calling webhook", method=config.method, url=url, timeout_ms=timeout_ms)
        try:
            response = await asyncio.wait_for(
                self._send(config.method, url, headers, content, timeout_ms / 1000, services.http_transport),
                timeout=timeout_ms / 1000,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise WebhookTimeoutError(url, timeout_ms) from e
        except httpx.HTTPError as e:
            raise ActionError(f"Webhook request failed: {e}", action_type=self.action_type.value) from e

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        if not response.is_success:
            logger.warning("Webhook returned non-2xx", url=url, status_code=response.status_code)

        output = {
            "success": response.is_success,
            "status_code": response.status_code,
            "response": data,
            "called_at": services.now_iso(),
        }
        if config.output_field:
            output[config.output_field] = data
        return output

    @staticmethod
    async def _send(
        method: str,
        url: str,
        headers: Dict[str, str],
        content: Optional[str],
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport],
    ) -> httpx.Response:
        # Per-phase limits; the caller's wait_for bounds the total
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False) as client:
            return await client.request(method, url, headers=headers, content=content)


WEBHOOK_ACTION_TYPES = {
    ActionType.WEBHOOK_CALL: WebhookCallAction,
}
