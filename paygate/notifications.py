"""Decoding of IPN bodies.

PayDunya posts either JSON or ``application/x-www-form-urlencoded`` bodies
where nested keys use bracket notation (``data[invoice][token]=...``).
Both are turned into the same nested dict; a top-level ``data`` wrapper is
unwrapped. Parsing happens only after the signature has been checked.
"""
import json
import re
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

_BRACKETS = re.compile(r"\[([^\]]*)\]")


class InvalidNotification(ValueError):
    pass


def _set_path(target: Dict[str, Any], key: str, value: str) -> None:
    head = key.split("[", 1)[0]
    parts = [head] + _BRACKETS.findall(key[len(head):])
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def parse_form(body: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in parse_qsl(body, keep_blank_values=True):
        _set_path(result, key, value)
    return result


def parse_notification(body: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidNotification("body is not valid UTF-8") from exc

    stripped = text.strip()
    looks_json = stripped.startswith("{")
    if (content_type and "json" in content_type.lower()) or looks_json:
        try:
            payload = json.loads(stripped)
        except ValueError as exc:
            raise InvalidNotification("body is not valid JSON") from exc
    else:
        payload = parse_form(text)

    if not isinstance(payload, dict):
        raise InvalidNotification("body must be an object")

    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def reference_token(payload: Dict[str, Any]) -> Optional[str]:
    invoice = payload.get("invoice")
    candidates = [payload.get("token")]
    if isinstance(invoice, dict):
        candidates.append(invoice.get("token"))
    for value in candidates:
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return None
