import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```[a-zA-Z0-9]*\s*(.*?)\s*```", re.DOTALL)
_decoder = json.JSONDecoder()


def _candidates(text: str) -> list[str]:
    # fenced blocks first (planners often wrap the plan in ```json ... ```), then the raw text
    blocks = [m.group(1) for m in _FENCE_RE.finditer(text)]
    return blocks + [text]


def extract_json(text: str) -> Any:
    """
    Parse the first JSON object/array found in a model reply.

    Tolerates code fences, leading prose and trailing garbage. Raises
    ValueError when nothing in the text decodes.
    """
    last_error: ValueError | None = None
    for candidate in _candidates((text or "").strip()):
        for idx, ch in enumerate(candidate):
            if ch not in "{[":
                continue
            try:
                value, _ = _decoder.raw_decode(candidate, idx)
                return value
            except json.JSONDecodeError as e:
                last_error = e
    raise last_error or ValueError("No JSON object/array found in text")
