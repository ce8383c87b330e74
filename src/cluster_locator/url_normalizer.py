"""
Server URL normalization.

Every map and set kept by the cluster client is keyed by the canonical
``scheme://[user[:pass]@]host:port`` form produced here, so equivalent
spellings of one server collapse into a single record.
"""

import re
from typing import Optional
from urllib.parse import urlsplit

import idna

from cluster_locator.exceptions import UrlFormatError


DEFAULT_SCHEME = "https"

DEFAULT_PORTS = {
    "https": 443,
}

FALLBACK_PORT = 80

# Control characters, whitespace and delimiters that never appear in a host
FORBIDDEN_HOST_CHARS = re.compile(r'[\x00-\x1f\x7f\s!"#$%&\'()*+,/;<=>?@\\^`{|}~]')


def normalize_url(raw: str) -> str:
    """
    Convert an arbitrary server address to its canonical form.

    Args:
        raw: Address as supplied by a caller, storage, or a peer
             (e.g. 'a.example', 'https://a.example/some/path')

    Returns:
        Canonical 'scheme://[user[:pass]@]host:port' string

    Raises:
        UrlFormatError: If the address cannot be parsed
    """
    if not isinstance(raw, str) or not raw.strip():
        raise UrlFormatError(
            code="empty_input",
            message="Server address is empty",
            details={"raw_input": raw},
        )

    text = raw.strip()
    if text.startswith("//"):
        text = f"{DEFAULT_SCHEME}:{text}"
    elif "://" not in text:
        text = f"{DEFAULT_SCHEME}://{text}"

    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError as e:
        raise UrlFormatError(
            code="parse_error",
            message=f"Unable to parse server address: {e}",
            details={"raw_input": raw},
        )

    scheme = (parts.scheme or DEFAULT_SCHEME).lower()
    host = _canonical_host(parts.hostname, raw)

    if port is None:
        port = DEFAULT_PORTS.get(scheme, FALLBACK_PORT)

    result = [scheme, "://"]
    if parts.username:
        result.append(parts.username)
        if parts.password:
            result.append(f":{parts.password}")
        result.append("@")
    result.append(f"[{host}]" if ":" in host else host)
    result.append(f":{port}")
    return "".join(result)


def origin_of(url: str) -> str:
    """Return a normalized URL without its credentials: scheme://host:port."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc.rpartition('@')[2]}"


def _canonical_host(hostname: Optional[str], raw: str) -> str:
    if not hostname:
        raise UrlFormatError(
            code="missing_host",
            message="Server address has no host",
            details={"raw_input": raw},
        )

    host = hostname.lower().rstrip(".")

    if ":" in host:
        # IPv6 literal, already validated by urlsplit
        return host

    if FORBIDDEN_HOST_CHARS.search(host):
        raise UrlFormatError(
            code="forbidden_chars",
            message="Server host contains forbidden characters",
            details={"raw_input": raw, "host": host},
        )

    if any(ord(c) > 127 for c in host):
        try:
            host = idna.encode(host, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise UrlFormatError(
                code="idna_error",
                message=f"IDNA encoding failed: {e}",
                details={"raw_input": raw, "idna_error": str(e)},
            )

    if not host:
        raise UrlFormatError(
            code="missing_host",
            message="Server address has no host",
            details={"raw_input": raw},
        )

    return host
