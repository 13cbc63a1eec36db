import re
from typing import Any

# Regex for masking secrets (best-effort)
SECRET_PATTERNS = [
    re.compile(r"sk-[a-zA-Z0-9]{32,}", re.IGNORECASE),
    re.compile(r"Bearer\s+[a-zA-Z0-9._-]+", re.IGNORECASE),
    re.compile(r"api[-_]?key|token|secret|password", re.IGNORECASE),
]

_KEY_PATTERN = SECRET_PATTERNS[2]
_VALUE_PATTERNS = SECRET_PATTERNS[:2]


def mask_secrets(data: Any) -> Any:
    """
    Recursively redacts sensitive info from log payloads.

    Event payloads are free-form, so anything that looks like a credential
    (by key name or by value shape) is replaced with ``[REDACTED]`` before it
    reaches a log stream.
    """
    if isinstance(data, dict):
        new_dict = {}
        for k, v in data.items():
            if isinstance(k, str) and _KEY_PATTERN.search(k):
                new_dict[k] = "[REDACTED]"
            else:
                new_dict[k] = mask_secrets(v)
        return new_dict
    elif isinstance(data, (list, tuple)):
        return [mask_secrets(i) for i in data]
    elif isinstance(data, str):
        masked = data
        for p in _VALUE_PATTERNS:
            masked = p.sub("[REDACTED]", masked)
        return masked
    return data
