from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = {
    "PRIVATE_KEY",
    "VIEWING_KEY",
    "SILK_VIEWING_KEY",
    "PERMIT",
    "SHADE_LEND_PERMIT",
    "SHADE_MASTER_PERMIT",
    "SIGNATURE",
    "BOT_TOKEN",
    "API_TOKEN",
    "GATEWAY_API_TOKEN",
    "AUTHORIZATION",
    "PASSWORD",
    "SECRET",
    "MNEMONIC",
}

_SENSITIVE_PARTS = tuple(part.casefold() for part in SENSITIVE_KEYS)
_SENSITIVE_EXACT_KEYS = {"key", "token", "auth", "permit", "signature", "secret"}

_PLAIN_SECRET_PATTERNS = (
    re.compile(r"(?im)(authorization\s*[:=]\s*)(bearer\s+)?([^\s,;]+)"),
    re.compile(r"(?im)(viewing_key\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(private_key\s*[:=]\s*)([^\s,;]+)"),
    re.compile(r"(?im)(bot_token\s*[:=]\s*)([^\s,;]+)"),
)

_TELEGRAM_PATH_PATTERN = re.compile(r"(/bot)(\d+:[A-Za-z0-9_-]+)")
_JSON_KEY_VALUE_PATTERN = re.compile(
    r'("(?:key|viewing_key|private_key|signature|authorization|bot_token|password)"\s*:\s*")'
    r'([^"\\]*)(")',
    re.IGNORECASE,
)


def _is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    return normalized in _SENSITIVE_EXACT_KEYS or any(
        part in normalized for part in _SENSITIVE_PARTS
    )


def _mask_secret(value: str) -> str:
    if not value:
        return REDACTED
    if len(value) > 8:
        return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
    if len(value) <= 2:
        return "*" * len(value)
    return f"{'*' * (len(value) - 2)}{value[-2:]}"


def _redact_match(match: re.Match[str]) -> str:
    prefix = match.group(1)
    optional_scheme = ""
    if match.lastindex and match.lastindex >= 3:
        optional_scheme = match.group(2) or ""
    return f"{prefix}{optional_scheme}[REDACTED]"


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in known_secrets:
        if secret:
            redacted = redacted.replace(secret, _mask_secret(str(secret)))

    for pattern in _PLAIN_SECRET_PATTERNS:
        redacted = pattern.sub(_redact_match, redacted)

    redacted = _TELEGRAM_PATH_PATTERN.sub(lambda m: f"{m.group(1)}{REDACTED}", redacted)
    return _JSON_KEY_VALUE_PATTERN.sub(
        lambda m: f"{m.group(1)}{_mask_secret(m.group(2))}{m.group(3)}", redacted
    )


def sanitize_mapping(
    d: Mapping[str, Any], known_secrets: Iterable[str] = ()
) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in d.items():
        key_str = str(key)
        if _is_sensitive_key(key_str):
            if isinstance(value, Mapping | list | tuple):
                sanitized[key_str] = REDACTED
            else:
                sanitized[key_str] = _mask_secret(str(value)) if value is not None else REDACTED
            continue
        sanitized[key_str] = redact_data(value, known_secrets)
    return sanitized


def redact_data(value: Any, known_secrets: Iterable[str] = ()) -> Any:
    if isinstance(value, Mapping):
        return sanitize_mapping(value, known_secrets)
    if isinstance(value, list):
        return [redact_data(item, known_secrets) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_data(item, known_secrets) for item in value)
    if isinstance(value, str):
        return sanitize_text(value, known_secrets)
    return value
