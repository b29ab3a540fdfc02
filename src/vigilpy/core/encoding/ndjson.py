"""NDJSON encoder for exported records."""

import json
from collections.abc import Iterable, Mapping
from typing import Any


def encode_ndjson(records: Iterable[Mapping[str, Any]]) -> str:
    """Encode records to newline-delimited JSON.

    Args:
        records: An iterable of JSON-serializable mappings, such as the
            output of ``export_spans``.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no records.
    """
    lines = [json.dumps(dict(record), default=str) for record in records]

    if not lines:
        return ""

    return "\n".join(lines) + "\n"
