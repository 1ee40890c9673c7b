# === NAVMAP v1 ===
# {
#   "module": "JiraDC.Adapter.content_converter",
#   "purpose": "Convert rich document trees to Jira wiki markup and classify text formats",
#   "sections": [
#     {"id": "contentconverter", "name": "ContentConverter", "anchor": "class-contentconverter", "kind": "class"},
#     {"id": "extract-plain-text", "name": "extract_plain_text", "anchor": "function-extract-plain-text", "kind": "function"},
#     {"id": "is-rich-document", "name": "is_rich_document", "anchor": "function-is-rich-document", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Rich document tree → Jira wiki markup conversion.

Hosted Jira accepts rich text as an Atlassian Document Format tree; Data Center expects
wiki markup strings. :class:`ContentConverter` walks the tree depth-first and emits a
markup production per node type. Conversion is total: unknown nodes keep their text,
malformed subtrees degrade to plain text, and every degradation leaves a warning on the
returned :class:`~JiraDC.Adapter.types.ConversionResult`.

Node productions:
  - heading → ``hN. text``
  - strong/em/code/strike/underline/subsup/textColor marks → paired delimiters
  - link mark → ``[text|href]``, mention → ``[~id]``
  - bulletList/orderedList → ``*``/``#`` prefixed lines (prefixes stack when nested)
  - codeBlock → ``{code:lang}`` or ``{noformat}`` region
  - blockquote → ``{quote}``, panel → ``{panel:title=type}``
  - table → ``||header||`` and ``|cell|`` rows

Example:
  ```python
  converter = ContentConverter()
  result = converter.to_markup({"type": "doc", "version": 1, "content": [...]})
  if result.fallback_used:
      LOGGER.warning("conversion degraded: %s", result.warnings)
  ```
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .types import ConversionOptions, ConversionResult, FormatDetection, ValidationResult

__all__ = ["ContentConverter", "extract_plain_text", "is_rich_document"]

LOGGER = logging.getLogger(__name__)

_BLOCK_TYPES = frozenset(
    {
        "paragraph",
        "heading",
        "codeBlock",
        "blockquote",
        "panel",
        "bulletList",
        "orderedList",
        "listItem",
        "tableRow",
        "rule",
    }
)

_COLOR_RE = re.compile(r"^#?[0-9A-Za-z]+$")


def _wrap(left: str, right: Optional[str] = None) -> Callable[[str, Mapping[str, Any]], str]:
    return lambda text, _attrs: f"{left}{text}{right if right is not None else left}"


def _subsup(text: str, attrs: Mapping[str, Any]) -> str:
    delimiter = "~" if attrs.get("type") == "sub" else "^"
    return f"{delimiter}{text}{delimiter}"


def _text_color(text: str, attrs: Mapping[str, Any]) -> str:
    color = str(attrs.get("color") or "")
    if not _COLOR_RE.match(color):
        return text
    return f"{{color:{color}}}{text}{{color}}"


_MARKS: Dict[str, Callable[[str, Mapping[str, Any]], str]] = {
    "strong": _wrap("*"),
    "em": _wrap("_"),
    "code": _wrap("{{", "}}"),
    "strike": _wrap("-"),
    "underline": _wrap("+"),
    "subsup": _subsup,
    "textColor": _text_color,
}


def is_rich_document(value: Any) -> bool:
    """True when ``value`` looks like a rich document tree root."""
    return (
        isinstance(value, Mapping)
        and value.get("type") == "doc"
        and isinstance(value.get("content"), list)
    )


def extract_plain_text(node: Any) -> str:
    """
    Collect the text of ``node`` and its descendants.

    Iterative so arbitrarily deep trees cannot exhaust the interpreter stack. Block
    level nodes are separated by newlines; hard breaks become newlines.
    """

    parts: List[str] = []
    stack: List[Any] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, str):
            parts.append(current)
            continue
        if isinstance(current, list):
            stack.extend(reversed(current))
            continue
        if not isinstance(current, Mapping):
            continue
        node_type = current.get("type")
        if node_type == "hardBreak":
            parts.append("\n")
            continue
        text = current.get("text")
        if isinstance(text, str):
            parts.append(text)
        elif node_type == "mention":
            attrs = current.get("attrs") or {}
            parts.append(str(attrs.get("text") or attrs.get("id") or ""))
        children = current.get("content")
        if node_type in _BLOCK_TYPES:
            stack.append("\n")
        if isinstance(children, list):
            stack.extend(reversed(children))
    return re.sub(r"\n{3,}", "\n\n", "".join(parts)).strip()


class _Context:
    """Mutable state for one conversion run."""

    def __init__(self, options: ConversionOptions) -> None:
        self.options = options
        self.warnings: List[str] = []
        self.unsupported: List[str] = []
        self.degraded = False
        self.list_prefix = ""

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


class ContentConverter:
    """Convert rich document trees to wiki markup; detect and validate text formats."""

    def __init__(self, options: Optional[ConversionOptions] = None) -> None:
        self.options = options or ConversionOptions()
        self._handlers: Dict[str, Callable[[Mapping[str, Any], _Context, int], str]] = {
            "doc": self._children,
            "paragraph": self._paragraph,
            "heading": self._heading,
            "text": self._text,
            "hardBreak": lambda _n, _c, _d: "\n",
            "rule": lambda _n, _c, _d: "----\n\n",
            "bulletList": self._list,
            "orderedList": self._list,
            "listItem": self._children,
            "codeBlock": self._code_block,
            "inlineCode": self._inline_code,
            "blockquote": self._blockquote,
            "panel": self._panel,
            "table": self._table,
            "tableRow": self._table_row,
            "tableHeader": self._children,
            "tableCell": self._children,
            "link": self._link,
            "mention": self._mention,
            "emoji": self._emoji,
            "inlineCard": self._card,
            "blockCard": self._card,
            "mediaSingle": self._media_block,
            "mediaGroup": self._media_block,
            "media": self._media,
        }

    # ──────────────────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────────────────

    def to_markup(self, document: Any, options: Optional[ConversionOptions] = None) -> ConversionResult:
        """
        Convert ``document`` to wiki markup.

        Args:
            document: A rich tree (mapping), a list of nodes, or a string. Strings that
                parse as a rich tree are converted; other strings pass through unchanged.
            options: Per-call override of the converter's options.

        Returns:
            ConversionResult whose ``content`` is always a string.
        """

        ctx = _Context(options or self.options)

        if document is None:
            return ConversionResult(content="", format="plaintext", warnings=("Empty document",))

        if isinstance(document, str):
            detection = self.detect_format(document)
            if detection.format != "adf":
                if detection.format == "html":
                    ctx.warn("HTML content passed through without conversion")
                fmt = "wikimarkup" if detection.format == "wikimarkup" else "plaintext"
                return ConversionResult(content=document, format=fmt, warnings=tuple(ctx.warnings))
            document = json.loads(document)

        try:
            if isinstance(document, list):
                raw = self._nodes(document, ctx, 1)
            elif isinstance(document, Mapping):
                raw = self._node(document, ctx, 0)
            else:
                ctx.warn(f"Unsupported document type {type(document).__name__}; used its text form")
                return ConversionResult(
                    content=str(document),
                    format="plaintext",
                    fallback_used=True,
                    warnings=tuple(ctx.warnings),
                )
            content = self._clean(raw)
        except Exception as exc:
            LOGGER.warning(
                "Rich content conversion failed; falling back to plain text",
                extra={"extra_fields": {"event": "conversion.fallback", "error": str(exc)}},
            )
            ctx.warn(f"Conversion failed ({exc}); fell back to plain text")
            return ConversionResult(
                content=extract_plain_text(document),
                format="plaintext",
                fallback_used=True,
                warnings=tuple(ctx.warnings),
                unsupported_elements=tuple(ctx.unsupported),
            )

        if ctx.degraded:
            LOGGER.info(
                "Rich content partially degraded to plain text",
                extra={"extra_fields": {"event": "conversion.fallback", "warnings": ctx.warnings}},
            )
        return ConversionResult(
            content=content,
            format="wikimarkup",
            fallback_used=ctx.degraded,
            warnings=tuple(ctx.warnings),
            unsupported_elements=tuple(dict.fromkeys(ctx.unsupported)),
        )

    def convert_rich_fields(self, payload: Any) -> Tuple[Any, bool, List[str]]:
        """
        Replace every rich document tree inside a JSON payload with its markup.

        Returns ``(converted_payload, applied, warnings)``; the input is not mutated.
        """

        warnings: List[str] = []
        applied = False

        def walk(value: Any, path: str) -> Any:
            nonlocal applied
            if is_rich_document(value):
                result = self.to_markup(value)
                applied = True
                warnings.extend(f"{path}: {w}" for w in result.warnings)
                return result.content
            if isinstance(value, Mapping):
                return {k: walk(v, f"{path}.{k}" if path else str(k)) for k, v in value.items()}
            if isinstance(value, list):
                return [walk(v, f"{path}[{i}]") for i, v in enumerate(value)]
            return value

        return walk(payload, ""), applied, warnings

    def detect_format(self, content: Any) -> FormatDetection:
        """Classify ``content`` as adf, wikimarkup, html or plaintext with a confidence band."""

        if is_rich_document(content):
            return FormatDetection("adf", "high", ("ADF structure",))
        if not isinstance(content, str):
            return FormatDetection("plaintext", "low", ("Non-text content",))

        stripped = content.strip()
        if stripped.startswith("{") and '"type"' in stripped and '"content"' in stripped:
            try:
                parsed = json.loads(stripped)
            except ValueError:
                parsed = None
            if is_rich_document(parsed):
                return FormatDetection(
                    "adf", "high", ("ADF JSON structure", "doc type", "content array")
                )

        matches = [p.pattern for p in _WIKI_PATTERNS if p.search(content)]
        if matches:
            confidence = "high" if len(matches) >= 3 else "medium" if len(matches) == 2 else "low"
            return FormatDetection(
                "wikimarkup", confidence, tuple(f"Wiki pattern: {m}" for m in matches)
            )

        tags = _HTML_TAG_RE.findall(content)
        if tags:
            density = sum(len(t) for t in tags) / max(len(content), 1)
            confidence = "high" if len(tags) >= 4 and density >= 0.2 else "medium"
            return FormatDetection(
                "html", confidence, (f"HTML tags detected: {len(tags)}", f"tag density {density:.2f}")
            )

        return FormatDetection("plaintext", "low", ("No specific format markers detected",))

    def markup_to_plain_text(self, markup: str) -> str:
        """Strip wiki markup formatting, keeping the readable text."""

        text = markup
        for pattern, replacement in _PLAIN_TEXT_RULES:
            text = pattern.sub(replacement, text)
        return text.strip()

    def validate(self, markup: str) -> ValidationResult:
        """Report unbalanced code, quote and panel regions. Does not repair the text."""

        errors: List[str] = []

        code_opens, code_closes = _count_regions(markup, "code")
        if code_opens != code_closes:
            errors.append(f"Unclosed code blocks: {code_opens} opened, {code_closes} closed")

        quotes = len(re.findall(r"\{quote\}", markup))
        if quotes % 2:
            errors.append(f"Unclosed quotes: {(quotes + 1) // 2} opened, {quotes // 2} closed")

        panel_opens, panel_closes = _count_regions(markup, "panel")
        if panel_opens != panel_closes:
            errors.append(f"Unclosed panels: {panel_opens} opened, {panel_closes} closed")

        return ValidationResult(valid=not errors, errors=tuple(errors))

    def get_supported_elements(self) -> List[str]:
        return sorted(self._handlers)

    def get_supported_marks(self) -> List[str]:
        return sorted([*_MARKS, "link"])

    # ──────────────────────────────────────────────────────────────────────────
    # Tree walk
    # ──────────────────────────────────────────────────────────────────────────

    def _nodes(self, nodes: Any, ctx: _Context, depth: int) -> str:
        if not isinstance(nodes, list):
            return ""
        return "".join(self._node(child, ctx, depth) for child in nodes)

    def _node(self, node: Any, ctx: _Context, depth: int) -> str:
        if not isinstance(node, Mapping):
            ctx.warn(f"Ignored malformed node of type {type(node).__name__}")
            return ""
        node_type = node.get("type")
        if depth > ctx.options.max_depth:
            ctx.degraded = True
            ctx.warn(
                f"Maximum nesting depth {ctx.options.max_depth} exceeded; content flattened to plain text"
            )
            return extract_plain_text(node)
        handler = self._handlers.get(node_type) if isinstance(node_type, str) else None
        if handler is None:
            return self._unsupported(node, ctx, depth)
        try:
            return handler(node, ctx, depth)
        except Exception as exc:
            ctx.degraded = True
            ctx.warn(f"Failed to convert {node_type} node ({exc}); used plain text")
            return extract_plain_text(node)

    def _unsupported(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        node_type = str(node.get("type") or "unknown")
        ctx.unsupported.append(node_type)
        ctx.warn(f"Unsupported node type '{node_type}' converted to plain text")
        if isinstance(node.get("content"), list):
            text = self._nodes(node["content"], ctx, depth + 1)
        elif isinstance(node.get("text"), str):
            text = node["text"]
        else:
            text = str((node.get("attrs") or {}).get("text") or "")
        if ctx.options.include_unsupported_as_comment:
            text = f"{{color:gray}}[unsupported: {node_type}]{{color}} {text}"
        return text

    def _children(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        return self._nodes(node.get("content"), ctx, depth + 1)

    def _paragraph(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        return f"{self._children(node, ctx, depth)}\n\n"

    def _heading(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        level = int((node.get("attrs") or {}).get("level") or 1)
        level = min(max(level, 1), 6)
        return f"h{level}. {self._children(node, ctx, depth).strip()}\n\n"

    def _text(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        text = node.get("text") or ""
        if not text:
            return ""
        href = None
        for mark in node.get("marks") or ():
            mark_type = mark.get("type")
            attrs = mark.get("attrs") or {}
            if mark_type == "link":
                href = attrs.get("href")
                continue
            render = _MARKS.get(mark_type)
            if render is None:
                ctx.warn(f"Unsupported mark '{mark_type}' ignored")
                continue
            text = render(text, attrs)
        if href:
            text = f"[{text}|{href}]"
        return text

    def _inline_code(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        return f"{{{{{node.get('text') or extract_plain_text(node)}}}}}"

    def _link(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        attrs = node.get("attrs") or {}
        href = attrs.get("href") or attrs.get("url") or ""
        text = self._children(node, ctx, depth).strip() or node.get("text") or href
        return f"[{text}|{href}]" if href else text

    def _mention(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        attrs = node.get("attrs") or {}
        user_id = attrs.get("id")
        if not user_id:
            return str(attrs.get("text") or "")
        return f"[~{user_id}]"

    def _emoji(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        attrs = node.get("attrs") or {}
        return str(attrs.get("text") or attrs.get("shortName") or "")

    def _card(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        url = (node.get("attrs") or {}).get("url")
        return f"[{url}]" if url else ""

    def _media_block(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        return f"{self._children(node, ctx, depth)}\n\n"

    def _media(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        attrs = node.get("attrs") or {}
        name = attrs.get("alt") or attrs.get("id") or "attachment"
        return f"!{name}!"

    def _code_block(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        language = (node.get("attrs") or {}).get("language")
        code = "".join(
            child.get("text") or "" for child in node.get("content") or () if isinstance(child, Mapping)
        )
        if language:
            return f"{{code:{language}}}\n{code}\n{{code}}\n\n"
        return f"{{noformat}}\n{code}\n{{noformat}}\n\n"

    def _blockquote(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        return f"{{quote}}\n{self._children(node, ctx, depth).strip()}\n{{quote}}\n\n"

    def _panel(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        panel_type = (node.get("attrs") or {}).get("panelType") or "info"
        inner = self._children(node, ctx, depth).strip()
        return f"{{panel:title={panel_type}}}\n{inner}\n{{panel}}\n\n"

    def _list(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        nested = bool(ctx.list_prefix)
        marker = ctx.list_prefix + ("#" if node.get("type") == "orderedList" else "*")
        lines: List[str] = []
        for item in node.get("content") or ():
            if not isinstance(item, Mapping) or item.get("type") != "listItem":
                lines.append(self._node(item, ctx, depth + 1))
                continue
            text_parts: List[str] = []
            sublists: List[str] = []
            for child in item.get("content") or ():
                if isinstance(child, Mapping) and child.get("type") in ("bulletList", "orderedList"):
                    saved = ctx.list_prefix
                    ctx.list_prefix = marker
                    try:
                        sublists.append(self._node(child, ctx, depth + 2))
                    finally:
                        ctx.list_prefix = saved
                else:
                    rendered = self._node(child, ctx, depth + 2).strip()
                    if rendered:
                        text_parts.append(rendered)
            lines.append(f"{marker} {' '.join(text_parts)}\n")
            lines.extend(sublists)
        return "".join(lines) if nested else "".join(lines) + "\n"

    def _table(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        rows = [self._node(row, ctx, depth + 1) for row in node.get("content") or ()]
        return "".join(rows) + "\n"

    def _table_row(self, node: Mapping[str, Any], ctx: _Context, depth: int) -> str:
        cells: List[str] = []
        delimiter = "|"
        for cell in node.get("content") or ():
            if not isinstance(cell, Mapping):
                continue
            delimiter = "||" if cell.get("type") == "tableHeader" else "|"
            text = _CELL_BREAK_RE.sub(" ", self._nodes(cell.get("content"), ctx, depth + 2).strip())
            cells.append(f"{delimiter}{text}")
        if not cells:
            return ""
        return "".join(cells) + f"{delimiter}\n"

    @staticmethod
    def _clean(markup: str) -> str:
        markup = re.sub(r"[ \t]+$", "", markup, flags=re.MULTILINE)
        markup = re.sub(r"\n{3,}", "\n\n", markup)
        return markup.strip()


# ──────────────────────────────────────────────────────────────────────────────
# Patterns
# ──────────────────────────────────────────────────────────────────────────────

_WIKI_PATTERNS = (
    re.compile(r"^h[1-6]\.", re.MULTILINE),
    re.compile(r"\*[^*\n]+\*"),
    re.compile(r"_[^_\n]+_"),
    re.compile(r"\{\{[^}]+\}\}"),
    re.compile(r"\{code[^}]*\}"),
    re.compile(r"\{quote\}"),
    re.compile(r"^\* ", re.MULTILINE),
    re.compile(r"^# ", re.MULTILINE),
    re.compile(r"\[~[^\]]+\]"),
    re.compile(r"\[[^\]]*\|[^\]]*\]"),
)

_HTML_TAG_RE = re.compile(r"</?[A-Za-z][^<>]*>")

# Table cells cannot contain line breaks.
_CELL_BREAK_RE = re.compile(r"\s*\n+\s*")

_PLAIN_TEXT_RULES = (
    (re.compile(r"^h[1-6]\.\s*", re.MULTILINE), ""),
    (re.compile(r"\{code[^}]*\}([\s\S]*?)\{code\}"), r"\1"),
    (re.compile(r"\{noformat\}([\s\S]*?)\{noformat\}"), r"\1"),
    (re.compile(r"\{quote\}([\s\S]*?)\{quote\}"), r"\1"),
    (re.compile(r"\{panel[^}]*\}([\s\S]*?)\{panel\}"), r"\1"),
    (re.compile(r"\{color[^}]*\}([\s\S]*?)\{color\}"), r"\1"),
    (re.compile(r"^\s*[*#]+\s+", re.MULTILINE), "• "),
    (re.compile(r"\*([^*\n]+)\*"), r"\1"),
    (re.compile(r"\b_([^_\n]+)_\b"), r"\1"),
    (re.compile(r"\{\{([^}]+)\}\}"), r"\1"),
    (re.compile(r"\[~([^\]]+)\]"), r"@\1"),
    (re.compile(r"\[([^\]|]*)\|[^\]]*\]"), r"\1"),
    (re.compile(r"^-{4,}\s*$", re.MULTILINE), "---"),
    (re.compile(r"\n{3,}"), "\n\n"),
)


def _count_regions(markup: str, macro: str) -> Tuple[int, int]:
    """Count opened and closed ``{macro}`` regions.

    ``{macro:params}`` always opens; a bare ``{macro}`` closes an open region or
    opens a new one.
    """

    opens = closes = 0
    depth = 0
    for token in re.findall(r"\{" + macro + r"(?::[^}]*)?\}", markup):
        if token == f"{{{macro}}}" and depth > 0:
            closes += 1
            depth -= 1
        else:
            opens += 1
            depth += 1
    return opens, closes
