"""Prompt templates for AI document enhancement.

Every enhancement task uses a dedicated prompt from this module so the
prompts can be audited and versioned in one place.
"""

from __future__ import annotations

from typing import Any

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

# ── 1. Intelligent chunking ───────────────────────────────────────────

CHUNKING_SYSTEM = """\
You are an expert in preparing documents for a Retrieval-Augmented
Generation system.

Split the text into semantic CHUNKS that work well for search.

Rules:
1. Each chunk is a coherent, self-contained unit of information.
2. Target size: {target_size} characters (±30%).
3. Minimum size: {min_size} characters.
4. At most {max_chunks} chunks.
5. Every chunk must be understandable without the others.
6. Respect section titles, topic changes and related lists.

{context}

Respond with **only** valid JSON — no markdown fences, no commentary.
"""

CHUNKING_USER = """\
Split this text into semantic chunks:

\"\"\"
{text}
\"\"\"

Respond with exactly this JSON shape:
{{
  "chunks": [
    {{"start": 0, "end": 500, "title": "Descriptive title", "summary": "One-line summary"}}
  ],
  "reasoning": "Short explanation of how you split the text"
}}
"""


def build_chunking_prompt(
    text: str,
    *,
    target_size: int,
    min_size: int,
    max_chunks: int,
    context: dict[str, Any],
) -> list[BaseMessage]:
    """Build the prompt for AI-driven chunk boundaries (character offsets)."""
    return [
        SystemMessage(
            content=CHUNKING_SYSTEM.format(
                target_size=target_size,
                min_size=min_size,
                max_chunks=max_chunks,
                context=_format_context(context),
            )
        ),
        HumanMessage(content=CHUNKING_USER.format(text=text)),
    ]


# ── 2. Summary ────────────────────────────────────────────────────────

SUMMARY_SYSTEM = """\
You summarise documents for a knowledge base.

Respond with a JSON object:

  "summary"    – 2-4 sentence summary of the whole document
  "key_points" – list of up to 7 short key points
  "topics"     – list of up to 5 topic keywords

{context}

Respond with **only** valid JSON.
"""


def build_summary_prompt(text: str, *, context: dict[str, Any]) -> list[BaseMessage]:
    return [
        SystemMessage(content=SUMMARY_SYSTEM.format(context=_format_context(context))),
        HumanMessage(content=f"Document:\n\"\"\"\n{text}\n\"\"\""),
    ]


# ── 3. Entity extraction ──────────────────────────────────────────────

ENTITIES_SYSTEM = """\
You extract structured entities from business documents.

Entity types: {entity_types}

Respond with a JSON object:

  "entities" – list of {{"type": <entity type>, "value": <text as written>}}

Only include entities that literally appear in the text.

{context}

Respond with **only** valid JSON.
"""


def build_entities_prompt(
    text: str,
    *,
    entity_types: list[str],
    context: dict[str, Any],
) -> list[BaseMessage]:
    return [
        SystemMessage(
            content=ENTITIES_SYSTEM.format(
                entity_types=", ".join(entity_types),
                context=_format_context(context),
            )
        ),
        HumanMessage(content=f"Document:\n\"\"\"\n{text}\n\"\"\""),
    ]


# ── Helpers ────────────────────────────────────────────────────────────


def _format_context(context: dict[str, Any]) -> str:
    lines = [f"- {key.capitalize()}: {value}" for key, value in context.items() if value]
    if not lines:
        return ""
    return "Document context:\n" + "\n".join(lines)
