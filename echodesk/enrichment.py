"""Clean up runtime issue text for display, optionally via a local model."""

from __future__ import annotations

import json
import unicodedata
from dataclasses import dataclass

import httpx

ENRICH_TIMEOUT_S = 1.5
ENRICH_MODEL = "llama3.2"
ENRICH_MAX_CHARS = 240

_PROMPT_TEMPLATE = (
    "Rewrite this runtime issue for UI display. Keep it concise, factual, and "
    'action-oriented. Return JSON only as {\\"cleaned\\":\\"...\\"}. '
    "Max 28 words. Input: "
)


@dataclass(frozen=True)
class EnrichmentResult:
    cleaned: str | None
    status: str
    error: str | None


def _failed(error: str) -> EnrichmentResult:
    return EnrichmentResult(cleaned=None, status="failed", error=error)


async def enrich_issue_message(model_endpoint: str, raw_message: str) -> EnrichmentResult:
    """Ask the model endpoint for a concise rewrite of ``raw_message``.

    Never raises: every failure is reported in the returned result.
    """
    normalized_raw = sanitize_display_text(raw_message, ENRICH_MAX_CHARS)
    if not normalized_raw:
        return _failed("empty_message")

    endpoint = resolve_generate_endpoint(model_endpoint)
    body = {
        "model": ENRICH_MODEL,
        "stream": False,
        "format": "json",
        "prompt": _PROMPT_TEMPLATE + normalized_raw,
    }

    try:
        async with httpx.AsyncClient(timeout=ENRICH_TIMEOUT_S) as client:
            response = await client.post(endpoint, json=body)
            response.raise_for_status()
    except httpx.HTTPStatusError as error:
        return _failed(f"http: {error}")
    except httpx.HTTPError as error:
        return _failed(f"request: {error}")

    try:
        decoded = response.json()
    except ValueError as error:
        return _failed(f"decode: {error}")
    if not isinstance(decoded, dict) or not isinstance(decoded.get("response"), str):
        return _failed("decode: missing string field `response`")

    try:
        payload = json.loads(decoded["response"])
    except ValueError as error:
        return _failed(f"invalid_json: {error}")
    if not isinstance(payload, dict) or not isinstance(payload.get("cleaned"), str):
        return _failed("invalid_json: missing string field `cleaned`")

    cleaned = sanitize_display_text(payload["cleaned"], ENRICH_MAX_CHARS)
    if not cleaned:
        return _failed("empty_output")
    return EnrichmentResult(cleaned=cleaned, status="success", error=None)


def resolve_generate_endpoint(model_endpoint: str) -> str:
    """Return the generate URL for a model endpoint base or full API URL."""
    if "/api/" in model_endpoint:
        return model_endpoint
    return f"{model_endpoint.rstrip('/')}/api/generate"


def sanitize_display_text(raw: str, max_chars: int) -> str:
    """Strip escape sequences and control characters, collapse whitespace, truncate."""
    if not raw.strip() or max_chars == 0:
        return ""
    stripped = _strip_ansi_sequences(raw)
    kept = (
        " " if ch in "\n\r\t" else ch
        for ch in stripped
        if ch in "\n\r\t" or unicodedata.category(ch) != "Cc"
    )
    collapsed = " ".join("".join(kept).split())
    return _truncate_chars(collapsed, max_chars)


def _skip_until_st(chars, *, bell_ends: bool) -> None:
    prev = "\0"
    for ch in chars:
        if (bell_ends and ch == "\x07") or (prev == "\x1b" and ch == "\\"):
            return
        prev = ch


def _strip_ansi_sequences(text: str) -> str:
    out: list[str] = []
    chars = iter(text)
    for ch in chars:
        if ch != "\x1b":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt is None:
            break
        if nxt == "[":
            for seq_char in chars:
                if "@" <= seq_char <= "~":
                    break
        elif nxt == "]":
            _skip_until_st(chars, bell_ends=True)
        elif nxt in ("P", "_", "^"):
            _skip_until_st(chars, bell_ends=False)
    return "".join(out)


def _truncate_chars(text: str, max_chars: int) -> str:
    if max_chars == 0 or not text:
        return ""
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 1, 0)] + "…"