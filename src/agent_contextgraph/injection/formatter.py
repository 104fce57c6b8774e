"""Markdown rendering for injection selections."""

from typing import List

from ..types import ContextItem, ContextType, InjectionEntry, InjectionSelection

REFERENCE_PREVIEW_CHARS = 80


def condensed_text(item: ContextItem, head_lines: int = 10, tail_lines: int = 5, max_words: int = 80) -> str:
    """
    A shorter rendering of an item for the summary format.

    Uses the stored summary when there is one. Otherwise code keeps its
    first and last lines, and prose keeps its first `max_words` words.
    Returns the content unchanged when it is already short.
    """
    if item.summary:
        return item.summary

    content = item.content
    if item.context_type == ContextType.CODE:
        lines = content.splitlines()
        if len(lines) <= head_lines + tail_lines:
            return content
        omitted = len(lines) - head_lines - tail_lines
        return "\n".join(
            lines[:head_lines] + [f"... ({omitted} lines omitted) ..."] + lines[-tail_lines:]
        )

    words = content.split()
    if len(words) <= max_words:
        return content
    return " ".join(words[:max_words]) + "..."


def reference_line(item: ContextItem, chat_title: str = None) -> str:
    """One-line pointer to an item."""
    first_line = item.content.strip().splitlines()[0] if item.content.strip() else ""
    preview = first_line[:REFERENCE_PREVIEW_CHARS]
    if len(first_line) > REFERENCE_PREVIEW_CHARS or len(item.content.strip()) > len(first_line):
        preview += "..."
    source = chat_title or item.chat_id
    return f"[{item.context_type.value}] \"{source}\" ({item.id}): {preview}"


def _full_block(entry: InjectionEntry) -> str:
    item = entry.context
    lines = [
        f"### Context from \"{entry.chat_title or item.chat_id}\"",
        f"- **Score:** {entry.score:.2f}",
        f"- **Type:** {item.context_type.value}",
        f"- **Date:** {item.timestamp.date().isoformat()}",
        "",
    ]
    if item.context_type == ContextType.CODE and item.metadata.get("language"):
        lines.append(f"```{item.metadata['language']}\n{entry.text}\n```")
    else:
        lines.append(entry.text)
    lines.extend(["", "---", ""])
    return "\n".join(lines) + "\n"


def _summary_block(entry: InjectionEntry) -> str:
    item = entry.context
    body = "\n".join("  " + line for line in entry.text.splitlines())
    return (
        f"- **[{item.context_type.value}]** from \"{entry.chat_title or item.chat_id}\" "
        f"({item.timestamp.date().isoformat()})\n{body}\n\n"
    )


def render_markdown(selection: InjectionSelection) -> str:
    """Render a selection as a markdown block for the model's context."""
    output = f"## Relevant Context for: \"{selection.query}\"\n\n"

    if not selection.entries:
        return output + "*No relevant context found from previous conversations.*\n"

    output += f"*Found {len(selection.entries)} relevant contexts ({selection.total_tokens} tokens):*\n\n"

    for entry in selection.by_format("full"):
        output += _full_block(entry)

    summaries: List[InjectionEntry] = selection.by_format("summary")
    if summaries:
        output += "### Summarized Contexts\n\n"
        for entry in summaries:
            output += _summary_block(entry)

    references = selection.by_format("reference")
    if references:
        output += "### Referenced Contexts\n\n"
        for entry in references:
            output += f"- {entry.text}\n"

    return output
