# oracle_bridge/auth.py
"""
API key auth.

Env vars:
- MOCK_AUTH (default: true), bypass auth in dev
- API_KEYS: comma-separated allowed keys
- API_KEYS_FILE: optional path to file with one key per line
- ADMIN_API_KEYS: comma-separated keys allowed to change oracle config
"""

import os
from typing import Optional, Set

# Configuration
MOCK_AUTH = os.getenv("MOCK_AUTH", "true").lower() in ("1", "true", "yes")
API_KEYS_ENV = os.getenv("API_KEYS", "")
API_KEYS_FILE = os.getenv("API_KEYS_FILE", "")
ADMIN_API_KEYS_ENV = os.getenv("ADMIN_API_KEYS", "")


def _split_keys(raw: str) -> Set[str]:
    return {k.strip() for k in raw.split(",") if k.strip()}


def _load_api_keys() -> Set[str]:
    keys = _split_keys(API_KEYS_ENV)
    if API_KEYS_FILE and os.path.exists(API_KEYS_FILE):
        with open(API_KEYS_FILE, "r", encoding="utf-8") as f:
            for line in f:
                k = line.strip()
                if k:
                    keys.add(k)
    return keys


API_KEYS = _load_api_keys()
ADMIN_API_KEYS = _split_keys(ADMIN_API_KEYS_ENV)


def is_key_allowed(api_key: Optional[str]) -> bool:
    """Check if API key is valid. If MOCK_AUTH=true, always returns True."""
    if MOCK_AUTH:
        return True
    if not api_key:
        return False
    if not API_KEYS:
        return False
    return api_key in API_KEYS


def is_admin_key(api_key: Optional[str]) -> bool:
    """Admin keys gate config updates. MOCK_AUTH bypasses this too."""
    if MOCK_AUTH:
        return True
    return bool(api_key) and api_key in ADMIN_API_KEYS
