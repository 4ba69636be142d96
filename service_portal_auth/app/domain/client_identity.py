"""
Client identifier resolution for rate limiting.
"""

from typing import Mapping, Optional

EDGE_CLIENT_IP_HEADER = "cf-connecting-ip"
REAL_IP_HEADER = "x-real-ip"
FORWARDED_FOR_HEADER = "x-forwarded-for"
UNKNOWN_CLIENT = "unknown"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        # plain dicts are case sensitive; Starlette headers are not
        value = next((v for k, v in headers.items() if k.lower() == name), None)
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_client_id(headers: Mapping[str, str]) -> str:
    """Best-effort network origin of a request.

    The edge-injected header wins over the reverse proxy's real-IP header,
    which wins over the first ``X-Forwarded-For`` hop. Requests carrying
    none of them share the ``"unknown"`` bucket.
    """
    edge_ip = _header(headers, EDGE_CLIENT_IP_HEADER)
    if edge_ip:
        return edge_ip

    real_ip = _header(headers, REAL_IP_HEADER)
    if real_ip:
        return real_ip

    forwarded_for = _header(headers, FORWARDED_FOR_HEADER)
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    return UNKNOWN_CLIENT
