"""Approximate find-and-replace for model-authored document edits.

Edits written by a language model rarely reproduce the document verbatim:
line breaks get reflowed, runs of spaces collapse, full-width punctuation is
swapped for ASCII. Matching therefore escalates through three strategies:

1. ``exact``: the first literal occurrence of ``old_text``.
2. ``normalized``: a literal hit once whitespace runs are collapsed and
   compatibility forms are folded (NFKC) on both sides.
3. ``fuzzy``: the span with the best normalized edit similarity, located by
   ranking candidate regions with :class:`difflib.SequenceMatcher` and then
   aligning the needle against each region (approximate substring search).

Every function here is pure and picklable so batches can run in a worker
process (see :mod:`writersroom.documents.diff_worker`).
"""

from __future__ import annotations

import unicodedata
from difflib import SequenceMatcher
from typing import Any, Iterable, Mapping, Sequence

from ..conversation.models import DiffApplicationResult, DiffEdit

__all__ = [
    "DEFAULT_MIN_SIMILARITY",
    "NO_MATCH_ERROR",
    "EMPTY_OLD_TEXT_ERROR",
    "edit_distance",
    "edit_similarity",
    "normalize_with_map",
    "find_and_replace",
    "apply_edits",
    "run_diff_batch",
]

DEFAULT_MIN_SIMILARITY = 0.8
NO_MATCH_ERROR = "no sufficiently similar span found"
EMPTY_OLD_TEXT_ERROR = "old_text is empty"

_CANDIDATE_REGIONS = 6
# Haystacks up to this many needle lengths are aligned in one pass.
_SINGLE_PASS_FACTOR = 4


def edit_distance(a: str, b: str) -> int:
    """Return the Levenshtein distance between ``a`` and ``b``."""

    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def edit_similarity(a: str, b: str) -> float:
    """Return ``1 - distance / longest`` in ``[0, 1]``; two empty strings score 1."""

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return (longest - edit_distance(a, b)) / float(longest)


def normalize_with_map(text: str) -> tuple[str, list[int]]:
    """Collapse whitespace and fold compatibility forms, tracking source offsets.

    Returns the normalized text and a list where entry ``k`` is the index in
    ``text`` of the character that produced normalized character ``k``.
    """

    chars: list[str] = []
    index_map: list[int] = []
    for index, char in enumerate(text):
        folded = unicodedata.normalize("NFKC", char)
        if not folded or folded.isspace():
            if chars and chars[-1] != " ":
                chars.append(" ")
                index_map.append(index)
            continue
        for piece in folded:
            chars.append(piece)
            index_map.append(index)
    if chars and chars[-1] == " ":
        chars.pop()
        index_map.pop()
    return "".join(chars), index_map


def _map_span(index_map: Sequence[int], start: int, end: int) -> tuple[int, int]:
    return index_map[start], index_map[end - 1] + 1


def _candidate_regions(haystack: str, needle: str) -> list[tuple[int, int]]:
    size = len(needle)
    window = 2 * size
    step = max(1, size // 2)
    matcher = SequenceMatcher(None, autojunk=False)
    matcher.set_seq2(needle)
    scored: list[tuple[float, int]] = []
    for position in range(0, max(1, len(haystack) - size + 1), step):
        matcher.set_seq1(haystack[position : position + window])
        scored.append((matcher.quick_ratio(), position))
    scored.sort(key=lambda item: (-item[0], item[1]))

    regions: list[tuple[int, int]] = []
    pad = size // 2 + 1
    for _, position in scored[:_CANDIDATE_REGIONS]:
        regions.append((max(0, position - pad), min(len(haystack), position + window + pad)))
    regions.sort()
    merged: list[tuple[int, int]] = []
    for start, end in regions:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _align(region: str, needle: str) -> tuple[int, int, float]:
    """Semi-global alignment of ``needle`` against any substring of ``region``.

    Returns ``(start, end, similarity)`` for the best scoring substring.
    """

    width = len(region)
    prev_cost = [0] * (width + 1)
    prev_start = list(range(width + 1))
    for i, needle_char in enumerate(needle, 1):
        cur_cost = [i] + [0] * width
        cur_start = [0] * (width + 1)
        for j, region_char in enumerate(region, 1):
            best = prev_cost[j - 1] + (needle_char != region_char)
            origin = prev_start[j - 1]
            candidate = prev_cost[j] + 1
            if candidate < best:
                best, origin = candidate, prev_start[j]
            candidate = cur_cost[j - 1] + 1
            if candidate < best:
                best, origin = candidate, cur_start[j - 1]
            cur_cost[j] = best
            cur_start[j] = origin
        prev_cost, prev_start = cur_cost, cur_start

    size = len(needle)
    best_span = (0, 0, 0.0)
    for end in range(width + 1):
        start = prev_start[end]
        longest = max(size, end - start, 1)
        similarity = (longest - prev_cost[end]) / float(longest)
        if similarity > best_span[2]:
            best_span = (start, end, similarity)
    return best_span


def _best_fuzzy_span(haystack: str, needle: str) -> tuple[int, int, float] | None:
    if not haystack or not needle:
        return None
    if len(haystack) <= _SINGLE_PASS_FACTOR * len(needle):
        regions = [(0, len(haystack))]
    else:
        regions = _candidate_regions(haystack, needle)
    best: tuple[int, int, float] | None = None
    for region_start, region_end in regions:
        start, end, similarity = _align(haystack[region_start:region_end], needle)
        if end <= start:
            continue
        if best is None or similarity > best[2]:
            best = (region_start + start, region_start + end, similarity)
    return best


def _replace(document: str, start: int, end: int, new_text: str) -> str:
    return document[:start] + new_text + document[end:]


def find_and_replace(
    document: str,
    old_text: str,
    new_text: str,
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> tuple[str, DiffApplicationResult]:
    """Replace the best match for ``old_text`` and report how it was found.

    The document is returned unchanged when no span clears ``min_similarity``.
    """

    if not old_text:
        return document, DiffApplicationResult(
            old_text=old_text, new_text=new_text, applied=False, error=EMPTY_OLD_TEXT_ERROR
        )

    index = document.find(old_text)
    if index != -1:
        updated = _replace(document, index, index + len(old_text), new_text)
        return updated, DiffApplicationResult(
            old_text=old_text,
            new_text=new_text,
            applied=True,
            similarity=1.0,
            matched_span=old_text,
            strategy="exact",
        )

    normalized_document, index_map = normalize_with_map(document)
    normalized_needle, _ = normalize_with_map(old_text)
    if not normalized_needle or not normalized_document:
        return document, DiffApplicationResult(
            old_text=old_text, new_text=new_text, applied=False, error=NO_MATCH_ERROR
        )

    normalized_index = normalized_document.find(normalized_needle)
    if normalized_index != -1:
        start, end = _map_span(index_map, normalized_index, normalized_index + len(normalized_needle))
        span = document[start:end]
        return _replace(document, start, end, new_text), DiffApplicationResult(
            old_text=old_text,
            new_text=new_text,
            applied=True,
            similarity=round(edit_similarity(span, old_text), 4),
            matched_span=span,
            strategy="normalized",
        )

    best = _best_fuzzy_span(normalized_document, normalized_needle)
    if best is None or best[2] < min_similarity:
        return document, DiffApplicationResult(
            old_text=old_text,
            new_text=new_text,
            applied=False,
            similarity=round(best[2], 4) if best else None,
            error=NO_MATCH_ERROR,
        )
    start, end = _map_span(index_map, best[0], best[1])
    span = document[start:end]
    return _replace(document, start, end, new_text), DiffApplicationResult(
        old_text=old_text,
        new_text=new_text,
        applied=True,
        similarity=round(best[2], 4),
        matched_span=span,
        strategy="fuzzy",
    )


def apply_edits(
    document: str,
    edits: Iterable[DiffEdit],
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> tuple[str, list[DiffApplicationResult]]:
    """Apply ``edits`` in order; each edit sees the result of the previous ones."""

    results: list[DiffApplicationResult] = []
    current = document
    for edit in edits:
        current, result = find_and_replace(current, edit.old_text, edit.new_text, min_similarity)
        results.append(result)
    return current, results


def run_diff_batch(request: Mapping[str, Any]) -> dict[str, Any]:
    """Worker entry point: plain-dict request in, plain-dict response out."""

    document = str(request.get("document", ""))
    min_similarity = float(request.get("min_similarity", DEFAULT_MIN_SIMILARITY))
    edits = [
        DiffEdit(str(entry.get("oldText", "")), str(entry.get("newText", "")))
        for entry in request.get("edits") or ()
    ]
    updated, results = apply_edits(document, edits, min_similarity)
    return {"document": updated, "results": [result.to_dict() for result in results]}
