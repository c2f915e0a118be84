"""Multi-tier extraction of a file set from free-text model output.

Models are asked for a JSON object mapping file names to contents, but
what comes back is often prose around a fenced block, a fence nested
inside a JSON string, or bare JSON.  Tiers are tried in order and the
first one that yields an object with a recognizable file collection wins:

1. FENCED_JSON     body of a ```json fence
2. FENCED_GENERIC  balanced object inside any fence
3. BALANCED_SCAN   balanced object anywhere, quote and escape aware
4. BRACE_SPAN      first ``{`` to last ``}``
5. RAW_TEXT        nothing usable: the whole text becomes index.html

``extract_files`` never raises.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, ConfigDict

from pwaforge.core.json_tree import JsonObject, as_object, as_text, parse_json
from pwaforge.models.bundles import PRIMARY_ENTRY

logger = logging.getLogger(__name__)

FENCE = "```"
_JSON_FENCE_RE = re.compile(r"```[ \t]*json[ \t]*\r?\n?", re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\r?\n?")

# Upper bound on balanced objects parsed by one scan.
MAX_SCAN_STARTS = 64
# Closing markers tried per ```json opener.
MAX_FENCE_CLOSERS = 16

_KEY_PREFIXES = ("./", "/", "files/")


class ExtractionTier(str, Enum):
    FENCED_JSON = "fenced_json"
    FENCED_GENERIC = "fenced_generic"
    BALANCED_SCAN = "balanced_scan"
    BRACE_SPAN = "brace_span"
    RAW_TEXT = "raw_text"


class ExtractionResult(BaseModel):
    """Files recovered from a response and the tier that found them."""

    model_config = ConfigDict(frozen=True)

    files: dict[str, str]
    tier: ExtractionTier

    @property
    def is_fallback(self) -> bool:
        return self.tier == ExtractionTier.RAW_TEXT


# ---------------------------------------------------------------------------
# Projection: parsed object -> file map
# ---------------------------------------------------------------------------


def normalize_key(key: str) -> str:
    """Strip ``./``, leading ``/`` and ``files/`` prefixes from a file name."""
    key = key.strip()
    changed = True
    while changed:
        changed = False
        for prefix in _KEY_PREFIXES:
            if key.startswith(prefix):
                key = key[len(prefix):]
                changed = True
    return key


def _looks_like_path(key: str) -> bool:
    return "." in key or "/" in key


def project_file_collection(obj: JsonObject) -> dict[str, str] | None:
    """Read a file map out of a parsed object.

    A ``files`` member that is an object wins; otherwise the object
    itself is used when at least one key looks like a file path.
    """
    files_member = as_object(obj.get("files"))
    if files_member is not None:
        collection = files_member
    elif any(_looks_like_path(k) for k in obj.members):
        collection = obj
    else:
        return None

    files: dict[str, str] = {}
    for raw_key, value in collection.members.items():
        key = normalize_key(raw_key)
        if not key:
            continue
        files[key] = as_text(value)
    return files or None


def _try_candidate(candidate: str) -> dict[str, str] | None:
    obj = as_object(parse_json(candidate.strip()))
    if obj is None:
        return None
    return project_file_collection(obj)


# ---------------------------------------------------------------------------
# Scanners
# ---------------------------------------------------------------------------


def _closing_fences(text: str, start: int) -> Iterator[int]:
    pos = text.find(FENCE, start)
    tried = 0
    while pos != -1 and tried < MAX_FENCE_CLOSERS:
        tried += 1
        yield pos
        pos = text.find(FENCE, pos + len(FENCE))


def balanced_object_spans(text: str) -> list[tuple[int, int]]:
    """``(start, end)`` of every balanced ``{...}`` in *text*, ordered by start.

    One pass with a stack of open braces.  Quotes only open a string
    inside an object, backslash escapes are honoured, and a raw newline
    ends a string since well-formed JSON strings cannot contain one.  A
    stray ``}`` with nothing open is ignored.
    """
    spans: list[tuple[int, int]] = []
    stack: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"' or ch == "\n":
                in_string = False
            continue
        if ch == '"' and stack:
            in_string = True
        elif ch == "{":
            stack.append(i)
        elif ch == "}" and stack:
            spans.append((stack.pop(), i))
    spans.sort()
    return spans


def _scan_balanced(text: str) -> dict[str, str] | None:
    for start, end in balanced_object_spans(text)[:MAX_SCAN_STARTS]:
        files = _try_candidate(text[start:end + 1])
        if files is not None:
            return files
    return None


def _from_json_fence(text: str) -> dict[str, str] | None:
    for match in _JSON_FENCE_RE.finditer(text):
        body_start = match.end()
        # Nearest closer first; one nested inside a JSON string fails to parse
        for close in _closing_fences(text, body_start):
            files = _try_candidate(text[body_start:close])
            if files is not None:
                return files
    return None


def _fenced_blocks(text: str) -> Iterator[str]:
    """Bodies of fenced blocks, pairing each opener with the next marker."""
    pos = text.find(FENCE)
    while pos != -1:
        opener = _ANY_FENCE_RE.match(text, pos)
        body_start = opener.end() if opener else pos + len(FENCE)
        close = text.find(FENCE, body_start)
        if close == -1:
            yield text[body_start:]
            return
        yield text[body_start:close]
        pos = text.find(FENCE, close + len(FENCE))


def _from_any_fence(text: str) -> dict[str, str] | None:
    for body in _fenced_blocks(text):
        files = _scan_balanced(body)
        if files is not None:
            return files
    return None


def _from_brace_span(text: str) -> dict[str, str] | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return _try_candidate(text[first:last + 1])


_TIERS = (
    (ExtractionTier.FENCED_JSON, _from_json_fence),
    (ExtractionTier.FENCED_GENERIC, _from_any_fence),
    (ExtractionTier.BALANCED_SCAN, _scan_balanced),
    (ExtractionTier.BRACE_SPAN, _from_brace_span),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_files(raw_text: str) -> ExtractionResult:
    """Recover a file-name → content map from model output.

    Parameters
    ----------
    raw_text:
        The completion text, untrusted.

    Returns
    -------
    ExtractionResult
        Never empty: when no tier succeeds the whole text is returned as
        the single ``index.html`` entry.
    """
    for tier, scanner in _TIERS:
        try:
            files = scanner(raw_text)
        except Exception:
            logger.exception("Extractor tier %s crashed; trying the next tier", tier.value)
            continue
        if files is not None:
            logger.debug("Extracted %d file(s) via %s", len(files), tier.value)
            return ExtractionResult(files=files, tier=tier)

    logger.info("Response had no parseable file map; using it as %s", PRIMARY_ENTRY)
    return ExtractionResult(files={PRIMARY_ENTRY: raw_text}, tier=ExtractionTier.RAW_TEXT)
