# oneshot_webhook/x402/access.py
"""
IP allowlist for the x402 webhook.

When X402_IP_WHITELIST is set (comma separated IPs and CIDR ranges) only
matching clients may reach the webhook; everyone else gets a 403 before any
payment handling. An empty allowlist admits everyone.
"""
import logging
import ipaddress
from typing import Iterable, Optional, Set

from fastapi import Request

from oneshot_webhook.core.config import settings

logger = logging.getLogger(__name__)


def parse_ip_list(ip_string: Optional[str]) -> Set[str]:
    """
    Parse a comma-separated IP list into a set.

    Handles:
    - Individual IPs: "192.168.1.1"
    - CIDR notation: "192.168.0.0/24"
    - Whitespace trimming

    Invalid entries are logged and skipped.
    """
    if not ip_string or not ip_string.strip():
        return set()

    result = set()
    for item in ip_string.split(","):
        item = item.strip()
        if not item:
            continue

        try:
            if "/" in item:
                result.add(str(ipaddress.ip_network(item, strict=False)))
            else:
                result.add(str(ipaddress.ip_address(item)))
        except ValueError as e:
            logger.warning(f"Invalid IP address/range in config: {item} - {e}")

    return result


def ip_matches_list(client_ip: str, ip_list: Set[str]) -> bool:
    """
    Check if a client IP matches any entry in the IP list.

    Supports exact IP matches and CIDR ranges.
    """
    if not ip_list:
        return False

    try:
        client = ipaddress.ip_address(client_ip)
    except ValueError:
        logger.warning(f"Invalid client IP address: {client_ip}")
        return False

    for entry in ip_list:
        if "/" in entry:
            if client in ipaddress.ip_network(entry, strict=False):
                return True
        elif str(client) == entry:
            return True

    return False


def get_client_ips(request: Request) -> list:
    """
    Collect the addresses a request came through.

    The X-Forwarded-For chain first, then the direct peer.
    """
    ips = []
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ips.extend(ip.strip() for ip in forwarded_for.split(",") if ip.strip())

    if request.client:
        ips.append(request.client.host)

    return ips


def is_ip_whitelisted(client_ips: Iterable[str], whitelist: Optional[str] = None) -> bool:
    """
    Check whether any of the client's addresses is allowlisted.

    Args:
        client_ips: Addresses from get_client_ips
        whitelist: Allowlist string (defaults to X402_IP_WHITELIST)

    Returns:
        True if allowed; always True when no allowlist is configured
    """
    if whitelist is None:
        whitelist = settings.X402_IP_WHITELIST
    if not whitelist or not whitelist.strip():
        return True

    allowed = parse_ip_list(whitelist)
    client_ips = list(client_ips)
    for client_ip in client_ips:
        if ip_matches_list(client_ip, allowed):
            return True

    logger.warning(f"Blocked non-whitelisted client: {', '.join(client_ips) or 'unknown'}")
    return False
