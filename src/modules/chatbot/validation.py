"""Input validation, sanitization and request-metadata heuristics for the chatbot.

Everything here is pure and synchronous: no I/O, no logging. Callers decide
how to surface a failed result.
"""

from __future__ import annotations

import ipaddress
import json
import random
import re
import string
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.modules.chatbot.constants import (
    BOT_USER_AGENT_PATTERNS,
    MAX_CONTEXT_BYTES,
    MAX_CONTEXT_KEY_LENGTH,
    MAX_CONTEXT_VALUE_LENGTH,
    MAX_MESSAGE_LENGTH,
    UNKNOWN,
)

if TYPE_CHECKING:
    from starlette.requests import Request

_UUID_RE = re.compile(
    r"^(?:[0-9a-f]{8}-[0-9a-f]{4}-[1-8][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}"
    r"|00000000-0000-0000-0000-000000000000)$",
    re.IGNORECASE,
)
_ANONYMOUS_ID_RE = re.compile(r"^uuid_\d+_[a-zA-Z0-9]{9}$")

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
]
_HTML_TAG_RE = re.compile(r"<[^>]*>")
_BOT_RE = [re.compile(p, re.IGNORECASE) for p in BOT_USER_AGENT_PATTERNS]


@dataclass
class MessageValidation:
    is_valid: bool
    sanitized_message: str
    errors: list[str] = field(default_factory=list)


@dataclass
class ContextValidation:
    is_valid: bool
    sanitized_context: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class SecurityCheck:
    is_suspicious: bool = False
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RequestMetadata:
    """Client metadata captured at session creation, independent of any web framework."""

    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN

    @classmethod
    def from_request(cls, request: Request) -> RequestMetadata:
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else None
        ip = ip or request.headers.get("x-real-ip")
        if not ip and request.client is not None:
            ip = request.client.host
        return cls(
            ip_address=ip or UNKNOWN,
            user_agent=request.headers.get("user-agent") or UNKNOWN,
        )


def is_valid_uuid(value: Any) -> bool:
    """True for an RFC 4122 UUID string or an anonymous ``uuid_<millis>_<9 alnum>`` token."""
    if not value or not isinstance(value, str):
        return False
    return bool(_UUID_RE.match(value) or _ANONYMOUS_ID_RE.match(value))


def is_valid_session_id(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    return bool(_UUID_RE.match(value))


def generate_anonymous_user_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"uuid_{int(time.time() * 1000)}_{suffix}"


def validate_user_message(message: Any) -> MessageValidation:
    if not message or not isinstance(message, str):
        return MessageValidation(False, "", ["Message must be a non-empty string"])

    if len(message) > MAX_MESSAGE_LENGTH:
        return MessageValidation(
            False, message, [f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"]
        )

    result = MessageValidation(True, message)
    if any(pattern.search(message) for pattern in _SUSPICIOUS_PATTERNS):
        result.is_valid = False
        result.errors.append("Message contains potentially malicious content")

    result.sanitized_message = _HTML_TAG_RE.sub("", message)
    return result


def validate_context_data(context: Any) -> ContextValidation:
    """Validate caller-supplied dialogue context.

    A missing or non-mapping context is vacuously valid. Oversized payloads are
    rejected outright; individual entries that are not short scalar values are
    dropped without raising an error.
    """
    result = ContextValidation(True)
    if not context or not isinstance(context, Mapping):
        return result

    serialized = json.dumps(context, separators=(",", ":"), ensure_ascii=False, default=str)
    if len(serialized.encode("utf-8")) > MAX_CONTEXT_BYTES:
        result.is_valid = False
        result.errors.append(f"Context data too large (max {MAX_CONTEXT_BYTES // 1000}KB)")
        return result

    for key, value in context.items():
        if not isinstance(key, str) or len(key) > MAX_CONTEXT_KEY_LENGTH:
            continue
        if isinstance(value, str):
            if len(value) <= MAX_CONTEXT_VALUE_LENGTH:
                result.sanitized_context[key] = value
        elif isinstance(value, (bool, int, float)):
            result.sanitized_context[key] = value

    return result


def _is_loopback(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_loopback
    except ValueError:
        return False


def perform_security_check(meta: RequestMetadata) -> SecurityCheck:
    """Annotate a request for monitoring. Never used to reject traffic."""
    result = SecurityCheck()
    user_agent = meta.user_agent or UNKNOWN
    ip = meta.ip_address or UNKNOWN

    if user_agent == UNKNOWN:
        result.is_suspicious = True
        result.reasons.append("Missing user agent")

    if any(pattern.search(user_agent) for pattern in _BOT_RE):
        result.is_suspicious = True
        result.reasons.append("Bot-like user agent detected")

    if ip == UNKNOWN or _is_loopback(ip):
        result.is_suspicious = True
        result.reasons.append("Suspicious IP address")

    return result
