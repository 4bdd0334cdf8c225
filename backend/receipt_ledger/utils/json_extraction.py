"""Pull a JSON object out of free-form model output.

Vision models regularly wrap their answer in prose or Markdown fences
even when told not to. ``extract_json_object`` scans for the first
balanced ``{...}`` span, honouring string literals and escapes so that
braces inside values do not end the object early, and parses it.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from receipt_ledger.core.errors import ParseError


def find_balanced_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` substring of ``text`` or None."""
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]
    return None


def extract_json_object(text: str | None) -> dict[str, Any]:
    """Parse the first balanced JSON object in ``text``.

    Raises ``ParseError`` if there is no object or it does not parse.
    """
    candidate = find_balanced_object(text or "")
    if candidate is None:
        raise ParseError("Failed to parse receipt data: no JSON object found in model response")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Failed to parse receipt data: {exc.msg}") from exc
    except (ValueError, RecursionError) as exc:
        # Oversized integer literals and pathological nesting
        raise ParseError(f"Failed to parse receipt data: {exc}") from exc
    if not isinstance(data, dict):  # pragma: no cover - a balanced {...} always decodes to a dict
        raise ParseError("Failed to parse receipt data: top-level value is not an object")
    return data
