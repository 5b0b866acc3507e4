from __future__ import annotations

import re
from typing import Any, Tuple

REDACTION_MARKER = "[REDACTED]"

# Opaque value: 16+ token characters containing at least one letter and one digit.
_OPAQUE = r"(?=[A-Za-z0-9_\-./+=]*\d)(?=[A-Za-z0-9_\-./+=]*[A-Za-z])[A-Za-z0-9_\-./+=]{16,}"

# Keywords may follow "_" as in DB_PASSWORD=..., so they are anchored on letters and digits only.
_START = r"(?<![A-Za-z0-9])"

CREDENTIAL_PATTERNS = [
    # key=value / key: value assignments
    r"(?i)" + _START + r"(password|passwd|pwd)\s*[:=]\s*[\"']?[^\s\"'<>]{3,}",
    r"(?i)" + _START + r"(api[_-]?key|apikey|secret[_-]?key|client[_-]?secret|access[_-]?token|auth[_-]?token"
    r"|refresh[_-]?token|aws[_-]?secret[_-]?access[_-]?key)\s*[:=]\s*[\"']?[^\s\"'<>]{8,}",
    r"(?i)" + _START + r"(secret|token|credential|auth)\s*[:=]\s*[\"']?(?=[^\s\"'<>]*\d)[^\s\"'<>]{8,}",
    # environment-style names such as STRIPE_SECRET_KEY or GITHUB_TOKEN
    r"\b[A-Z0-9_]*(?:SECRET|TOKEN|PASSWORD|PASSWD|API_?KEY|ACCESS_KEY|PRIVATE_KEY)[A-Z0-9_]*\s*=\s*[\"']?"
    r"(?=[^\s\"'<>]*\d)(?=[^\s\"'<>]*[A-Za-z])[^\s\"'<>]{8,}",
    # long opaque strings next to a sensitive word
    r"(?i)" + _START + r"(api\s*key|key|token|secret|password|passphrase|credential)s?\b\W{0,3}(?:is\s+|was\s+)?[\"']?"
    + _OPAQUE,
    r"(?i)\bbearer\s+[A-Za-z0-9._\-]{20,}",
    # well-known token shapes
    r"\bAKIA[0-9A-Z]{16}\b",
    r"\bsk-(?:live-|test-|proj-)?[A-Za-z0-9]{20,}",
    r"\bsk_(?:live|test)_[A-Za-z0-9]{16,}",
    r"\bgh[pousr]_[A-Za-z0-9]{30,}",
    r"\bxox[abprs]-[A-Za-z0-9-]{10,}",
    r"\bAIza[0-9A-Za-z_\-]{35}\b",
    r"\beyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]{5,}",
    r"-----BEGIN[^-]*PRIVATE KEY-----",
    # credentials embedded in URLs / connection strings
    r"(?i)\b[a-z][a-z0-9+.\-]*://[^\s:/@]+:[^\s@/]+@",
    # card and SSN shaped numbers
    r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b",
    r"\b\d{3}-\d{2}-\d{4}\b",
]

_COMPILED = [re.compile(pattern) for pattern in CREDENTIAL_PATTERNS]


def contains_credential(text: str) -> bool:
    return any(pattern.search(text) for pattern in _COMPILED)


def redact_tree(value: Any) -> Tuple[Any, int]:
    """Return a copy of ``value`` with every credential-bearing string replaced.

    Strings are replaced whole, never partially, so no fragment of a secret
    survives. Dict keys are left as they are. The second element is the number
    of strings that were replaced.
    """
    if isinstance(value, str):
        if contains_credential(value):
            return REDACTION_MARKER, 1
        return value, 0
    if isinstance(value, dict):
        redacted: dict[Any, Any] = {}
        hits = 0
        for key, item in value.items():
            redacted[key], count = redact_tree(item)
            hits += count
        return redacted, hits
    if isinstance(value, list):
        items = []
        hits = 0
        for item in value:
            new_item, count = redact_tree(item)
            items.append(new_item)
            hits += count
        return items, hits
    return value, 0
