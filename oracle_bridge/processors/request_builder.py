# oracle_bridge/processors/request_builder.py
"""
Builds the opaque payload handed to the gateway transport.

The payload is a canonical JSON document (sorted keys, no whitespace) holding
the fixed source program and the per-request arguments, encoded as UTF-8.
The gateway decodes it; nothing in the core looks inside it again.
"""
import os
import json
import pathlib
from typing import List, Optional

from oracle_bridge.errors import EmptyKey, InputTooLong

CODE_LOCATION = "inline"
CODE_LANGUAGE = "javascript"

# Matches the String(255) key and originator columns in models.py
MAX_KEY_LENGTH = 255

# Program run by the computation service. args[0] is the lookup key (a date),
# args[1] the optional secondary key (an API path override).
DEFAULT_SOURCE = """
const date = args[0];
const path = args.length > 1 && args[1] ? args[1] : "/v1/rates/daily";
const resp = await Functions.makeHttpRequest({
  url: `https://api.example-rates.org${path}`,
  params: { date },
});
if (resp.error) {
  throw Error(`rate request failed for ${date}`);
}
return Functions.encodeString(String(resp.data.rate));
""".strip()


def load_source(path: Optional[str] = None) -> str:
    """Source from ORACLE_SOURCE_FILE (or ``path``) if set, else the built-in program."""
    path = path or os.getenv("ORACLE_SOURCE_FILE", "")
    if not path:
        return DEFAULT_SOURCE
    return pathlib.Path(path).read_text(encoding="utf-8")


def build_args(lookup_key: str, secondary_key: str = "") -> List[str]:
    if not isinstance(lookup_key, str) or not lookup_key.strip():
        raise EmptyKey()
    if len(lookup_key) > MAX_KEY_LENGTH:
        raise InputTooLong("lookup_key", MAX_KEY_LENGTH, len(lookup_key))
    args = [lookup_key]
    if secondary_key:
        args.append(secondary_key)
    return args


def build_request(lookup_key: str, secondary_key: str = "", source: str = DEFAULT_SOURCE) -> bytes:
    """
    Encode one request.

    Raises EmptyKey for an empty or whitespace-only lookup key and
    InputTooLong for a key longer than MAX_KEY_LENGTH.
    """
    payload = {
        "codeLocation": CODE_LOCATION,
        "codeLanguage": CODE_LANGUAGE,
        "source": source,
        "args": build_args(lookup_key, secondary_key),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_request(payload: bytes) -> dict:
    """Inverse of build_request."""
    return json.loads(payload.decode("utf-8"))
