"""Redirect URL construction and request metadata extraction."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

CLICK_ID_PARAM = "ina_click_id"
UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


@dataclass
class RequestMeta:
    """What we keep about the visitor behind a click."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    utm: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_request_parts(
        cls,
        headers: Mapping[str, str],
        query_params: Mapping[str, str],
        client_host: Optional[str] = None,
    ) -> "RequestMeta":
        return cls(
            ip_address=client_ip(headers, client_host),
            user_agent=headers.get("user-agent") or None,
            referrer=headers.get("referer") or None,
            utm=extract_utm(query_params),
        )


def client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> Optional[str]:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return fallback


def extract_utm(query_params: Mapping[str, str]) -> dict[str, str]:
    return {name: query_params[name] for name in UTM_PARAMS if query_params.get(name)}


def build_redirect_url(destination_url: str, click_id: str, utm: Mapping[str, str] | None = None) -> str:
    """Append the click id and pass-through UTM parameters to a destination.

    Existing query parameters on the destination are preserved; the click id
    and any UTM values supplied on the tracking link replace same-named ones.
    """

    parts = urlsplit(destination_url)
    overrides = {name: value for name, value in (utm or {}).items() if name in UTM_PARAMS and value}
    overrides[CLICK_ID_PARAM] = click_id
    params = [(name, value) for name, value in parse_qsl(parts.query, keep_blank_values=True) if name not in overrides]
    params.extend(overrides.items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))
