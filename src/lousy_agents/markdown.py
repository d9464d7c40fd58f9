"""
Markdown document model for instruction-quality heuristics.

This is a line-oriented, best-effort reader: it recognizes ATX and setext
headings, fenced and indented code blocks, and inline code spans, and records
line numbers for all of them.  It never raises on malformed input; anything it
cannot classify is treated as prose.

Containers
----------
Blockquote markers (``>``) and list-item indentation are stripped before a
line is classified, so a fence inside a blockquote or a list item is still a
code block.  A line belongs to the innermost open list item whose content
column it reaches; a less indented line closes that item unless it lazily
continues a paragraph.  A setext underline only counts when it sits in the
same container as the paragraph above it, so ``---`` right after a list item
is a thematic break.

An indented code block may start anywhere except directly below a paragraph
line (where it would be a paragraph continuation), including right under a
heading or a closing fence.

Structural context
------------------
A line's *structural context* is the nearest heading in its current heading
ancestry whose text contains one of the recognized patterns.  A heading of
equal or shallower level pops deeper headings off the ancestry, so a matching
``## Validation`` stops applying once the next ``##`` (or ``#``) heading
appears.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

DEFAULT_STRUCTURAL_HEADING_PATTERNS: Tuple[str, ...] = (
    "Validation",
    "Verification",
    "Feedback Loop",
    "Mandatory",
    "Before Commit",
    "Validation Suite",
    "Commands",
)

_ATX_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
_SETEXT_UNDERLINE_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
_THEMATIC_BREAK_RE = re.compile(r"^ {0,3}(?:(?:-[ \t]*){3,}|(?:\*[ \t]*){3,}|(?:_[ \t]*){3,})$")
_FENCE_OPEN_RE = re.compile(r"^( {0,3})(`{3,}|~{3,})(.*)$")
_INDENTED_CODE_RE = re.compile(r"^(?: {4}|\t)")
_INLINE_CODE_RE = re.compile(r"(?<!`)(`+)(?!`)(.+?)(?<!`)\1(?!`)")
_LIST_ITEM_RE = re.compile(r"^( {0,3})([-*+]|\d{1,9}[.)])(?:([ \t]+)|$)")
_BLOCKQUOTE_RE = re.compile(r"^ {0,3}> ?")
_FRONTMATTER_DELIMITER = "---"


@dataclass(frozen=True)
class MarkdownHeading:
    """A heading with its nesting level and 1-indexed line."""

    text: str
    level: int
    line: int


@dataclass(frozen=True)
class MarkdownCodeBlock:
    """A fenced or indented code block.

    ``start_line``/``end_line`` cover the whole block including fences;
    ``content`` holds only the code lines.
    """

    content: str
    start_line: int
    end_line: int
    fenced: bool = True
    language: Optional[str] = None
    context: Optional[MarkdownHeading] = None


@dataclass(frozen=True)
class MarkdownInlineCode:
    """An inline code span in prose or a heading."""

    content: str
    line: int
    context: Optional[MarkdownHeading] = None


@dataclass
class MarkdownDocument:
    """Headings, code blocks and inline code of one markdown file."""

    lines: List[str]
    headings: List[MarkdownHeading] = field(default_factory=list)
    code_blocks: List[MarkdownCodeBlock] = field(default_factory=list)
    inline_codes: List[MarkdownInlineCode] = field(default_factory=list)
    heading_patterns: Tuple[str, ...] = DEFAULT_STRUCTURAL_HEADING_PATTERNS
    body_start_line: int = 1  # first line after a leading frontmatter block

    @property
    def heading_lines(self) -> frozenset:
        return frozenset(h.line for h in self.headings)

    def line_text(self, line: int) -> str:
        """Text of the 1-indexed *line*, or an empty string when out of range."""
        if 1 <= line <= len(self.lines):
            return self.lines[line - 1]
        return ""

    def context_for_line(self, line: int) -> Optional[MarkdownHeading]:
        """Nearest matching heading in the ancestry of *line*."""
        return _context_for_line(self.headings, line, self.heading_patterns)


def heading_matches(text: str, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match of a heading against *patterns*."""
    lowered = text.lower()
    return any(pattern.lower() in lowered for pattern in patterns)


def _context_for_line(
    headings: Sequence[MarkdownHeading],
    line: int,
    patterns: Sequence[str],
) -> Optional[MarkdownHeading]:
    ancestry: List[MarkdownHeading] = []
    for heading in headings:
        if heading.line >= line:
            break
        while ancestry and ancestry[-1].level >= heading.level:
            ancestry.pop()
        ancestry.append(heading)

    for heading in reversed(ancestry):
        if heading_matches(heading.text, patterns):
            return heading
    return None


def _frontmatter_end(lines: Sequence[str]) -> int:
    """Index of the line after a leading frontmatter block (0 when absent)."""
    if not lines or lines[0].strip() != _FRONTMATTER_DELIMITER:
        return 0
    for idx in range(1, len(lines)):
        if lines[idx].strip() == _FRONTMATTER_DELIMITER:
            return idx + 1
    return 0


def _is_blank(line: str) -> bool:
    return not line.strip()


def _leading_spaces(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _strip_indent(line: str) -> str:
    if line.startswith("\t"):
        return line[1:]
    return line[4:] if line.startswith("    ") else line.lstrip(" ")


def _strip_spaces(line: str, limit: int) -> str:
    return line[min(_leading_spaces(line), limit) :]


def _strip_blockquotes(line: str, limit: Optional[int] = None) -> Tuple[int, str]:
    """Remove up to *limit* leading ``>`` markers; return (markers removed, rest)."""
    depth = 0
    match = _BLOCKQUOTE_RE.match(line)
    while match and (limit is None or depth < limit):
        depth += 1
        line = line[match.end() :]
        match = _BLOCKQUOTE_RE.match(line)
    return depth, line


def _starts_block(text: str) -> bool:
    """Whether *text* opens a block, which ends a lazy paragraph continuation."""
    return bool(
        _ATX_HEADING_RE.match(text)
        or _FENCE_OPEN_RE.match(text)
        or _THEMATIC_BREAK_RE.match(text)
        or _LIST_ITEM_RE.match(text)
    )


def _list_content_offset(match: "re.Match[str]") -> int:
    """Column where a list item's content starts, relative to the matched text."""
    marker_end = match.end(2)
    spacing = match.group(3) or ""
    if not spacing or len(spacing) > 4 or match.end() == len(match.string):
        return marker_end + 1
    return marker_end + len(spacing)


def _container_text(line: str, depth: int, column: int) -> Optional[str]:
    """*line* inside a container of *depth* blockquotes and list *column*.

    ``None`` when the line does not belong to that container.
    """
    found, rest = _strip_blockquotes(line, depth)
    if found < depth:
        return None
    if _is_blank(rest):
        return ""
    if _leading_spaces(rest) < column:
        return None
    return rest[column:]


def parse_markdown(
    content: str,
    heading_patterns: Optional[Sequence[str]] = None,
) -> MarkdownDocument:
    """Build a :class:`MarkdownDocument` from raw markdown *content*."""
    patterns = tuple(heading_patterns or DEFAULT_STRUCTURAL_HEADING_PATTERNS)
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    doc = MarkdownDocument(lines=lines, heading_patterns=patterns)

    # (content, start, end, fenced, language) collected first, contexts resolved later
    raw_blocks: List[Tuple[str, int, int, bool, Optional[str]]] = []
    raw_inline: List[Tuple[str, int]] = []

    idx = _frontmatter_end(lines)
    doc.body_start_line = idx + 1
    list_columns: List[int] = []  # content columns of the open list items
    list_depth = 0  # blockquote depth the open list items live in
    # (text, blockquote depth, list column) of the previous line when it was a paragraph line
    paragraph: Optional[Tuple[str, int, int]] = None

    while idx < len(lines):
        line_no = idx + 1
        depth, rest = _strip_blockquotes(lines[idx])

        if _is_blank(rest):
            paragraph = None
            idx += 1
            continue

        if depth != list_depth:
            list_columns = []
            list_depth = depth
        indent = _leading_spaces(rest)
        lazy = paragraph is not None and not _starts_block(rest.lstrip(" "))
        if not lazy:
            while list_columns and indent < list_columns[-1]:
                list_columns.pop()
        column = list_columns[-1] if list_columns else 0
        text = rest[min(column, indent) :]

        underline = _SETEXT_UNDERLINE_RE.match(text)
        if (
            underline
            and paragraph is not None
            and paragraph[1:] == (depth, column)
            and indent >= column
        ):
            level = 1 if underline.group(1).startswith("=") else 2
            doc.headings.append(MarkdownHeading(text=paragraph[0], level=level, line=line_no - 1))
            paragraph = None
            idx += 1
            continue

        if _THEMATIC_BREAK_RE.match(text):
            paragraph = None
            idx += 1
            continue

        item = _LIST_ITEM_RE.match(text)
        if item:
            offset = _list_content_offset(item)
            column += offset
            list_columns.append(column)
            text = text[offset:]
            paragraph = None
            if _is_blank(text):
                idx += 1
                continue

        fence = _FENCE_OPEN_RE.match(text)
        if fence and not (fence.group(2)[0] == "`" and "`" in fence.group(3)):
            # backtick fences cannot carry backticks in the info string
            marker = fence.group(2)
            info = fence.group(3).strip()
            fence_indent = len(fence.group(1))
            close_re = re.compile(
                r"^ {0,3}" + re.escape(marker[0]) + "{" + str(len(marker)) + r",}[ \t]*$"
            )
            body: List[str] = []
            end = idx + 1
            closed = False
            while end < len(lines):
                inner = _container_text(lines[end], depth, column)
                if inner is None:
                    break
                inner = _strip_spaces(inner, fence_indent)
                if close_re.match(inner):
                    closed = True
                    break
                body.append(inner)
                end += 1
            language = info.split()[0] if info else None
            end_line = end + 1 if closed else max(end, line_no)
            raw_blocks.append(("\n".join(body), line_no, end_line, True, language))
            idx = end_line
            paragraph = None
            continue

        if _INDENTED_CODE_RE.match(text) and paragraph is None:
            views = [text]
            end = idx + 1
            while end < len(lines):
                inner = _container_text(lines[end], depth, column)
                if inner is None or not (_is_blank(inner) or _INDENTED_CODE_RE.match(inner)):
                    break
                views.append(inner)
                end += 1
            while _is_blank(views[-1]):
                views.pop()
            raw_blocks.append(
                ("\n".join(_strip_indent(v) for v in views), line_no, idx + len(views), False, None)
            )
            idx += len(views)
            continue

        atx = _ATX_HEADING_RE.match(text)
        if atx:
            heading_text = (atx.group(2) or "").strip()
            doc.headings.append(
                MarkdownHeading(text=heading_text, level=len(atx.group(1)), line=line_no)
            )
            raw_inline.extend(_inline_spans(heading_text, line_no))
            paragraph = None
            idx += 1
            continue

        raw_inline.extend(_inline_spans(text, line_no))
        paragraph = (text.strip(), depth, column)
        idx += 1

    for content_text, start, end, fenced, language in raw_blocks:
        doc.code_blocks.append(
            MarkdownCodeBlock(
                content=content_text,
                start_line=start,
                end_line=end,
                fenced=fenced,
                language=language,
                context=_context_for_line(doc.headings, start, patterns),
            )
        )
    for span, line_no in raw_inline:
        doc.inline_codes.append(
            MarkdownInlineCode(
                content=span,
                line=line_no,
                context=_context_for_line(doc.headings, line_no, patterns),
            )
        )
    return doc


def _inline_spans(text: str, line_no: int) -> List[Tuple[str, int]]:
    return [(m.group(2).strip(), line_no) for m in _INLINE_CODE_RE.finditer(text)]
