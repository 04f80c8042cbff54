from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# Every prompt the planner renders, with the placeholders it substitutes.
PROMPT_KEYS: dict[str, frozenset[str]] = {
    "questioning.system_prompt": frozenset(),
    "research.system_prompt": frozenset({"max_searches", "marker"}),
    "synthesis.system_prompt": frozenset(),
    "synthesis.user_prompt": frozenset({"knowledge"}),
}

_catalog_cache: dict[str, str] | None = None


def _lookup(payload: dict[str, Any], key: str) -> Any:
    node: Any = payload
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _placeholders(template: str) -> frozenset[str]:
    return frozenset(
        match.group("named") or match.group("braced")
        for match in Template.pattern.finditer(template)
        if match.group("named") or match.group("braced")
    )


def _load_catalog() -> dict[str, str]:
    """Read the catalog once and check it serves every planner prompt.

    Missing or non-string entries and placeholder mismatches fail the load,
    so a broken catalog surfaces at first use instead of mid-plan.
    """
    global _catalog_cache
    if _catalog_cache is not None:
        return _catalog_cache

    payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Prompt catalog must be a JSON object.")

    catalog: dict[str, str] = {}
    missing: list[str] = []
    for key, expected in PROMPT_KEYS.items():
        entry = _lookup(payload, key)
        if not isinstance(entry, str):
            missing.append(key)
            continue
        found = _placeholders(entry)
        if found != expected:
            raise ValueError(
                f"Prompt '{key}' uses placeholders {sorted(found)}, expected {sorted(expected)}"
            )
        catalog[key] = entry
    if missing:
        raise ValueError(f"Prompt catalog is missing: {', '.join(missing)}")

    _catalog_cache = catalog
    return catalog


def render_prompt(key: str, **values: Any) -> str:
    catalog = _load_catalog()
    if key not in catalog:
        raise KeyError(f"Prompt key not found: {key}")
    try:
        return Template(catalog[key]).substitute(**values)
    except KeyError as exc:
        missing = str(exc.args[0])
        raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc
