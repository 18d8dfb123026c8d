"""
Transport codec for the stored status document.

The document lives in the store as UTF-8 JSON wrapped in base64. Both
directions go through raw bytes: decoding base64 straight to text would
mangle multi-byte characters (emoji, Hebrew task titles).
"""
import base64
import binascii
import json
from typing import Any, Dict

from .errors import ParseFailure


def encode_transport(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def decode_transport(encoded: str) -> bytes:
    """Undo base64. The GitHub API wraps content at 60 columns, so newlines are stripped first."""
    try:
        return base64.b64decode(encoded.replace("\n", "").replace("\r", ""), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseFailure("Stored content is not valid base64", str(e))


def encode_text(text: str) -> str:
    """str → UTF-8 bytes → base64."""
    return encode_transport(text.encode("utf-8"))


def decode_text(encoded: str) -> str:
    """base64 → bytes → UTF-8 str."""
    raw = decode_transport(encoded)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseFailure("Stored content is not valid UTF-8", str(e))


def dump_document(content: Dict[str, Any]) -> str:
    """Serialize the way the document is committed: 2-space indent, non-ASCII kept."""
    return json.dumps(content, indent=2, ensure_ascii=False)


def load_document(text: str) -> Dict[str, Any]:
    try:
        content = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseFailure("Document is not valid JSON", str(e))
    if not isinstance(content, dict):
        raise ParseFailure("Document root must be a JSON object")
    return content


def encode_document(content: Dict[str, Any]) -> str:
    return encode_text(dump_document(content))


def decode_document(encoded: str) -> Dict[str, Any]:
    return load_document(decode_text(encoded))
