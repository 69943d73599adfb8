"""Prompt templates for the three summary levels.

Every builder returns a ``[{"role": ..., "content": ...}]`` message list
ready for :meth:`ILLMProvider.complete`.  The batch prompt asks for one
``CHUNK <n> SUMMARY:`` block per input so that
:mod:`kb_ingest.services.summarization.batch_parser` can map the answer
back to chunks by position.
"""

from __future__ import annotations

CHUNK_SYSTEM_PROMPT = (
    "You summarize excerpts of documents for a knowledge base. "
    "Write factual, neutral summaries that keep names, numbers, dates and "
    "defined terms. Do not add information that is not in the excerpt and "
    "do not refer to 'the excerpt' or 'the text'."
)

SECTION_SYSTEM_PROMPT = (
    "You summarize sections of documents for a knowledge base. "
    "Capture the main points and how they relate. Be concise and factual."
)

DOCUMENT_SYSTEM_PROMPT = (
    "You write the overview summary of a whole document for a knowledge "
    "base, based on summaries of its sections. State what the document is "
    "about, its key points and any conclusions. Be concise and factual."
)

BATCH_MARKER = "CHUNK {number} SUMMARY:"


def chunk_messages(content: str) -> list[dict[str, str]]:
    """Messages for one 2-3 sentence chunk summary."""
    return [
        {"role": "system", "content": CHUNK_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                "Summarize the following excerpt in 2-3 sentences.\n\n"
                f"Excerpt:\n{content.strip()}"
            ),
        },
    ]


def batch_messages(contents: list[str]) -> list[dict[str, str]]:
    """Messages summarizing several chunks in one call, numbered from 1."""
    blocks = [f"--- CHUNK {number} ---\n{content.strip()}" for number, content in enumerate(contents, start=1)]
    expected = "\n".join(BATCH_MARKER.format(number=n) + " <summary>" for n in range(1, len(contents) + 1))
    return [
        {"role": "system", "content": CHUNK_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Summarize each of the {len(contents)} excerpts below in 2-3 sentences.\n"
                "Answer with exactly one block per excerpt, in order, using this format "
                "and nothing else:\n\n"
                f"{expected}\n\n"
                + "\n\n".join(blocks)
            ),
        },
    ]


def section_messages(section_identifier: str | None, content: str) -> list[dict[str, str]]:
    """Messages for one 3-4 sentence section summary."""
    label = f" ({section_identifier})" if section_identifier else ""
    return [
        {"role": "system", "content": SECTION_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Summarize this section{label} in 3-4 sentences.\n\n"
                f"Section text:\n{content.strip()}"
            ),
        },
    ]


def document_messages(title: str, section_summaries: list[tuple[str, str]]) -> list[dict[str, str]]:
    """Messages for the 4-5 sentence document summary."""
    body = "\n\n".join(f"[{name}]\n{summary.strip()}" for name, summary in section_summaries)
    heading = f"Document: {title}\n\n" if title else ""
    return [
        {"role": "system", "content": DOCUMENT_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"{heading}Using the section summaries below, write a 4-5 sentence "
                f"summary of the whole document.\n\nSection summaries:\n{body}"
            ),
        },
    ]
