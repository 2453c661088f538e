"""
One-way Markdown rendering of block documents, used for page exports.

The conversion is lossy (colors, underline, block ids and most props are
dropped) and is never read back.
"""
from typing import Any, Dict, List, Optional, Sequence

from ..schemas import Block, BlockDocument, InlineContent, Page

INDENT = "  "


def inline_to_markdown(items: Sequence[InlineContent]) -> str:
    parts = []
    for item in items:
        if item.type == "link":
            parts.append(f"[{item.text or ''}]({item.href or ''})")
            continue
        text = item.text or ""
        styles = item.styles
        if styles is not None:
            if styles.bold:
                text = f"**{text}**"
            if styles.italic:
                text = f"*{text}*"
            if styles.code:
                text = f"`{text}`"
            if styles.strikethrough:
                text = f"~~{text}~~"
        parts.append(text)
    return "".join(parts)


def _cell_text(cell: Any) -> str:
    if isinstance(cell, str):
        return cell
    if isinstance(cell, dict):
        # {"type": "tableCell", "content": [...]}
        cell = cell.get("content", [])
    if isinstance(cell, list):
        items = [InlineContent.model_validate(item) for item in cell if isinstance(item, dict)]
        return inline_to_markdown(items)
    return ""


def _table_lines(content: Dict[str, Any]) -> List[str]:
    rows = []
    for row in content.get("rows") or []:
        cells = row.get("cells", []) if isinstance(row, dict) else row
        rows.append([_cell_text(cell).replace("|", "\\|") for cell in cells])
    if not rows:
        return []
    width = max(len(row) for row in rows)
    rows = [row + [""] * (width - len(row)) for row in rows]
    lines = ["| " + " | ".join(rows[0]) + " |", "|" + "|".join([" --- "] * width) + "|"]
    lines.extend("| " + " | ".join(row) + " |" for row in rows[1:])
    return lines


def _block_lines(block: Block) -> List[str]:
    text = inline_to_markdown(block.content) if isinstance(block.content, list) else ""
    props = block.props or {}
    kind = block.type

    if kind == "heading":
        try:
            level = int(props.get("level") or 1)
        except (TypeError, ValueError):
            level = 1
        return [f"{'#' * min(max(level, 1), 6)} {text}", ""]
    if kind == "bulletListItem":
        return [f"- {text}"]
    if kind == "numberedListItem":
        return [f"1. {text}"]
    if kind == "checkListItem":
        return [f"- [{'x' if props.get('checked') else ' '}] {text}"]
    if kind == "codeBlock":
        return [f"```{props.get('language') or ''}", text, "```", ""]
    if kind == "image":
        return [f"![{props.get('caption') or ''}]({props.get('url') or ''})", ""]
    if kind in ("quote", "callout"):
        return [f"> {text}", ""] if text else []
    if kind == "divider":
        return ["---", ""]
    if kind == "table":
        table = _table_lines(block.content) if isinstance(block.content, dict) else []
        return table + [""] if table else []
    # paragraph and anything the core does not know
    return [text, ""] if text else []


def blocks_to_markdown(blocks: Sequence[Block]) -> str:
    lines: List[str] = []
    for block in blocks:
        lines.extend(_block_lines(block))
        for child in block.children:
            child_markdown = blocks_to_markdown([child])
            if child_markdown.strip():
                lines.extend(f"{INDENT}{line}" if line else "" for line in child_markdown.split("\n"))
    return "\n".join(lines).strip()


def block_document_to_markdown(content: Optional[BlockDocument]) -> str:
    if content is None or not content.blocks:
        return ""
    return blocks_to_markdown(content.blocks)


def page_to_markdown(page: Page) -> str:
    lines = [f"# {page.title or 'Untitled'}", ""]
    body = block_document_to_markdown(page.content)
    if body:
        lines.append(body)
    return "\n".join(lines)
