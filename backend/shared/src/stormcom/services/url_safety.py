"""Outbound webhook URL and header validation.

Webhook URLs are tenant-supplied, so every URL is checked before it is stored
and again before each delivery attempt:
- HTTPS only, with a host and no embedded credentials
- internal hostnames (localhost, *.local, *.internal) rejected
- cloud metadata endpoints rejected
- IP literals in private, loopback, link-local, reserved, multicast,
  unspecified or carrier-grade NAT ranges rejected
- numeric shorthand hosts (2130706433, 127.1, 0x7f.0.0.1, 017700000001) are
  read the way inet_aton reads them, so they get the same IP checks

Hostnames are not resolved here.
"""

import ipaddress
import re
from urllib.parse import urlsplit

from stormcom.models import UnsafeWebhookUrlError

BLOCKED_HOSTNAMES = frozenset({"localhost", "metadata.google.internal"})
BLOCKED_HOST_SUFFIXES = (".localhost", ".local", ".internal")

# Cloud instance metadata services (AWS, AWS IPv6, Alibaba)
BLOCKED_METADATA_ADDRESSES = frozenset(
    {
        ipaddress.ip_address("169.254.169.254"),
        ipaddress.ip_address("fd00:ec2::254"),
        ipaddress.ip_address("100.100.100.200"),
    }
)

CARRIER_GRADE_NAT = ipaddress.ip_network("100.64.0.0/10")

# A host whose last label looks like this is an IPv4 address, not a name
NUMERIC_LABEL = re.compile(r"^(?:0x[0-9a-f]*|[0-9]+)$")

# Custom headers a tenant may attach to deliveries (lower case)
ALLOWED_CUSTOM_HEADERS = frozenset(
    {
        "authorization",
        "x-api-key",
        "x-request-id",
        "x-custom-header",
        "x-webhook-token",
        "x-tenant-id",
        "x-correlation-id",
    }
)


def _blocked_ip_reason(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str | None:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped

    if ip in BLOCKED_METADATA_ADDRESSES:
        return "cloud metadata address"
    if ip.is_loopback:
        return "loopback address"
    if ip.is_link_local:
        return "link-local address"
    if ip.is_unspecified:
        return "unspecified address"
    if ip.is_multicast:
        return "multicast address"
    if isinstance(ip, ipaddress.IPv4Address) and ip in CARRIER_GRADE_NAT:
        return "carrier-grade NAT address"
    if ip.is_reserved:
        return "reserved address"
    if ip.is_private:
        return "private address"
    return None


def _parse_numeric_host(host: str) -> ipaddress.IPv4Address | None:
    """Read a numeric IPv4 host the way inet_aton does.

    Accepts 1 to 4 dot-separated parts in decimal, octal (leading 0) or
    hex (0x); the last part fills the remaining bytes.

    Returns:
        The address, or None if the host is a name rather than a number

    Raises:
        ValueError: The host is numeric but not a valid address
    """
    labels = host.split(".")
    if not NUMERIC_LABEL.match(labels[-1]):
        return None
    if len(labels) > 4:
        raise ValueError(f"too many parts in {host}")

    values = []
    for label in labels:
        if label.startswith("0x"):
            values.append(int(label[2:] or "0", 16))
        elif len(label) > 1 and label.startswith("0"):
            values.append(int(label, 8))
        else:
            values.append(int(label))

    *leading, last = values
    if any(v > 0xFF for v in leading) or last >= 256 ** (4 - len(leading)):
        raise ValueError(f"part out of range in {host}")

    address = last
    for index, value in enumerate(leading):
        address += value << (8 * (3 - index))
    return ipaddress.IPv4Address(address)


def validate_webhook_url(url: str) -> tuple[bool, str | None]:
    """Check whether a URL is a safe outbound webhook target.

    Args:
        url: Candidate webhook URL

    Returns:
        Tuple of (is_safe, reason). ``reason`` is None when safe.
    """
    try:
        parts = urlsplit(url.strip())
        # Accessing port validates it
        parts.port
    except ValueError:
        return False, "malformed URL"

    if parts.scheme.lower() != "https":
        return False, "only https URLs are allowed"
    if parts.username is not None or parts.password is not None:
        return False, "credentials in URL are not allowed"

    host = (parts.hostname or "").rstrip(".").lower()
    if not host:
        return False, "URL must include a host"

    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_HOST_SUFFIXES):
        return False, f"internal hostname {host}"

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        try:
            ip = _parse_numeric_host(host)
        except ValueError:
            return False, f"malformed numeric host {host}"
        if ip is None:
            return True, None

    reason = _blocked_ip_reason(ip)
    if reason:
        return False, reason
    return True, None


def assert_webhook_url_safe(url: str) -> None:
    """Raise UnsafeWebhookUrlError if the URL fails validate_webhook_url."""
    safe, reason = validate_webhook_url(url)
    if not safe:
        raise UnsafeWebhookUrlError(reason or "unsafe URL")


def filter_custom_headers(headers: dict[str, str] | None) -> dict[str, str]:
    """Keep only allow-listed headers with single-line values.

    Names are matched case-insensitively; original casing is preserved.
    """
    if not headers:
        return {}
    return {
        name: value
        for name, value in headers.items()
        if name.strip().lower() in ALLOWED_CUSTOM_HEADERS
        and "\r" not in value
        and "\n" not in value
    }
