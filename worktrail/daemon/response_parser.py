"""Best-effort decoding of analyzer output."""

import json
import re
from typing import Any, Dict

from loguru import logger


_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_response(text: str) -> Dict[str, Any]:
    """Decode the analyzer's reply as a JSON object.

    A surrounding markdown code fence is tolerated. Anything that does not
    decode to an object comes back as ``{"raw_response": text}`` so the
    window's summary is still persisted.
    """
    candidate = (text or "").strip()
    match = _FENCE_PATTERN.search(candidate)
    if match:
        candidate = match.group(1).strip()

    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Response is not valid JSON, keeping raw text: {e}")
        return {"raw_response": text}

    if not isinstance(parsed, dict):
        logger.warning(f"Response decoded to {type(parsed).__name__}, keeping raw text")
        return {"raw_response": text}

    return parsed
