from __future__ import annotations

import re


def normalize_result_url(href: str) -> str:
    """Turn protocol-relative links (``//host/path``) into explicit HTTPS."""
    href = href.strip()
    if href.startswith("//"):
        return f"https:{href}"
    return href


def clean_content(text: str, max_length: int = 0) -> str:
    """Collapse whitespace and trim to ``max_length`` (0 keeps everything)."""
    text = re.sub(r"\s+", " ", text).strip()
    if max_length > 0 and len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def preview(text: str, max_length: int = 200) -> str:
    text = clean_content(text)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
