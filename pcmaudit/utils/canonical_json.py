from __future__ import annotations
import json


def canonical_dumps(obj, *, indent: int | None = None) -> str:
    """Serialize to canonical JSON: sorted keys, no NaN, minimal whitespace unless indented."""
    separators = (",", ":") if indent is None else (",", ": ")
    return json.dumps(
        obj,
        ensure_ascii=False,
        sort_keys=True,
        separators=separators,
        indent=indent,
        allow_nan=False,
    )
