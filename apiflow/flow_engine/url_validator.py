"""
URL checks applied before any request leaves the engine, plus helpers to
keep credentials out of the logs.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

ALLOWED_SCHEMES = ('http', 'https')
LOCALHOST_NAMES = ('localhost', '127.0.0.1', '::1', '0.0.0.0')
SENSITIVE_PARAMS = ('password', 'token', 'key', 'secret', 'auth')


@dataclass
class UrlPolicy:
    """
    Which destinations a flow may call.

    Localhost and private networks are reachable by default since API
    testing usually targets local services.
    """
    allow_localhost: bool = True
    allow_private_ips: bool = True
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)

    def validate(self, url: Any) -> Dict[str, Any]:
        """
        Check a URL against the policy.

        Returns:
            Dict with 'is_valid' and a list of 'errors'
        """
        errors = []

        try:
            parts = urlsplit(url) if isinstance(url, str) else None
            hostname = parts.hostname if parts else None
        except ValueError:
            parts, hostname = None, None

        if not parts or not parts.scheme or not hostname:
            return {'is_valid': False, 'errors': ['Invalid URL format']}

        if parts.scheme.lower() not in ALLOWED_SCHEMES:
            errors.append(f"Protocol '{parts.scheme}:' is not allowed. Only HTTP and HTTPS are supported.")

        if not self.allow_localhost and is_localhost(hostname):
            errors.append('Localhost access is not allowed')

        if not self.allow_private_ips and is_private_ip(hostname):
            errors.append('Private IP access is not allowed')

        if self.allowed_domains and not _matches_any(hostname, self.allowed_domains):
            errors.append(f"Domain '{hostname}' is not in allowed domains list")

        if self.blocked_domains and _matches_any(hostname, self.blocked_domains):
            errors.append(f"Domain '{hostname}' is blocked")

        return {'is_valid': not errors, 'errors': errors}


def is_localhost(hostname: str) -> bool:
    hostname = hostname.lower()
    return hostname in LOCALHOST_NAMES or hostname.endswith('.local')


def is_private_ip(hostname: str) -> bool:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_link_local


def extract_domain(url: str) -> Optional[str]:
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def is_secure(url: str) -> bool:
    try:
        return urlsplit(url).scheme.lower() == 'https'
    except ValueError:
        return False


def sanitize_for_logging(url: Any) -> str:
    """Mask credential-like query parameters, e.g. ?token=abc -> ?token=%2A%2A%2A."""
    if not isinstance(url, str):
        return str(url)

    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    if not parts.query:
        return url

    params = [
        (name, '***' if name.lower() in SENSITIVE_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(params)))


def _matches_any(hostname: str, domains: List[str]) -> bool:
    hostname = hostname.lower()
    return any(
        hostname == domain.lower() or hostname.endswith('.' + domain.lower())
        for domain in domains
    )
