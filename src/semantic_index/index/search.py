from __future__ import annotations

from typing import Sequence

from .models import SearchResult

NO_RESULTS = "No results found for the query."


def render_results_markdown(results: Sequence[SearchResult]) -> str:
    """Render results for an agent tool: a bold ``path:start:end`` header and a fenced snippet each."""
    if not results:
        return NO_RESULTS
    parts: list[str] = []
    for r in results:
        snippet = r.snippet.rstrip("\n")
        parts.append(f"**{r.file_path}:{r.start_line}:{r.end_line}**\n```\n{snippet}\n```\n\n")
    return "".join(parts)
