"""Markdown-subset renderer for AI-generated course content.

The course generator returns topic bodies written in a small markdown dialect:
headings (with numbered ``####`` subtopics), bullet lines, fenced and inline
code, bold/italic emphasis and blank-line separated paragraphs. This module
turns that text into HTML that can be injected into the course page.

Passes run in a fixed order and never look at each other's output:

1. fenced code blocks are cut out into placeholders,
2. the remaining text is HTML-escaped,
3. each line is classified as heading, list item, blank or paragraph text,
4. inline code spans are cut out into placeholders,
5. bold, then italic,
6. paragraphs are assembled and the placeholders are put back verbatim.
"""

import html
import re
from typing import Dict, List, Optional

FENCE_MARK = "```"
BULLET = "•"

# NUL never survives input normalisation, so placeholder tokens cannot be forged.
_TOKEN_RE = re.compile(r"\x00(F|C|S)(\d+)\x00")

_HEADING_RE = re.compile(r"^(#{1,4}) +(\S.*?)\s*$")
_LIST_ITEM_RE = re.compile(r"^[*-] +(\S.*?)\s*$")
_SUBTOPIC_RE = re.compile(r"^(\d+(?:\.\d+)*)\.?(?=\s|$)")
_FENCE_LANG_RE = re.compile(r"^[\w+#.-]+$")

_INLINE_CODE_RE = re.compile(r"(?<!`)`([^`\n]+)`(?!`)")
_BOLD_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*(?=[^\s*])([^*\n]+?)(?<=\S)\*(?!\*)")

_HEADING_TAGS = {1: "h2", 2: "h2", 3: "h3", 4: "h4"}


class _Placeholders:
    """Opaque fragments kept out of later passes and restored at the end."""

    def __init__(self) -> None:
        self._items: Dict[str, List[str]] = {"F": [], "C": [], "S": []}

    def add(self, kind: str, fragment: str) -> str:
        bucket = self._items[kind]
        bucket.append(fragment)
        return f"\x00{kind}{len(bucket) - 1}\x00"

    def restore(self, text: str) -> str:
        # Bold fragments may hold code tokens, so keep substituting until stable.
        while _TOKEN_RE.search(text):
            text = _TOKEN_RE.sub(lambda m: self._items[m.group(1)][int(m.group(2))], text)
        return text


class _AnchorAllocator:
    """Hands out ``subtopic-<numeral>`` ids, suffixing repeats with -2, -3, ..."""

    def __init__(self) -> None:
        self._seen: Dict[str, int] = {}

    def allocate(self, numeral: str) -> str:
        base = f"subtopic-{numeral}"
        count = self._seen.get(base, 0) + 1
        self._seen[base] = count
        return base if count == 1 else f"{base}-{count}"


def _normalise(document: Optional[str]) -> str:
    if not document:
        return ""
    return str(document).replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")


def _split_fences(lines: List[str]) -> List[tuple]:
    """Group lines into ("text", line) and ("fence", lang, body_lines) items.

    An opening fence without a matching close is left as ordinary text.
    """
    items: List[tuple] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith(FENCE_MARK):
            close = next(
                (j for j in range(i + 1, len(lines)) if lines[j].startswith(FENCE_MARK)),
                None,
            )
            if close is not None:
                lang = line[len(FENCE_MARK):].strip()
                items.append(("fence", lang, lines[i + 1:close]))
                i = close + 1
                continue
        items.append(("text", line))
        i += 1
    return items


def _render_fence(lang: str, body: List[str]) -> str:
    code = html.escape("\n".join(body), quote=False)
    if lang and _FENCE_LANG_RE.match(lang):
        return f'<pre><code class="language-{html.escape(lang)}">{code}</code></pre>'
    return f"<pre><code>{code}</code></pre>"


def _render_inline(text: str, slots: _Placeholders) -> str:
    """Inline code, then bold, then italic over one already-escaped line."""
    text = _INLINE_CODE_RE.sub(lambda m: slots.add("C", f"<code>{m.group(1)}</code>"), text)
    text = _BOLD_RE.sub(lambda m: slots.add("S", f"<strong>{m.group(1)}</strong>"), text)
    return _ITALIC_RE.sub(r"<em>\1</em>", text)


def _subtopic_numeral(text: str) -> Optional[str]:
    match = _SUBTOPIC_RE.match(text)
    return match.group(1) if match else None


def render_markdown(document: str) -> str:
    """Render a course-content markdown document to HTML.

    Never raises: anything that does not match a construct is kept as
    (escaped) literal text, and every tag emitted here is closed.
    """
    text = _normalise(document)
    if not text.strip():
        return ""

    slots = _Placeholders()
    anchors = _AnchorAllocator()
    blocks: List[str] = []
    paragraph: List[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            blocks.append("<p>" + "<br>".join(paragraph) + "</p>")
            paragraph.clear()

    for item in _split_fences(text.split("\n")):
        if item[0] == "fence":
            flush_paragraph()
            blocks.append(slots.add("F", _render_fence(item[1], item[2])))
            continue

        line = html.escape(item[1], quote=False)
        if not line.strip():
            flush_paragraph()
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            flush_paragraph()
            level = len(heading.group(1))
            tag = _HEADING_TAGS[level]
            content = heading.group(2)
            numeral = _subtopic_numeral(content) if level == 4 else None
            id_attr = f' id="{anchors.allocate(numeral)}"' if numeral else ""
            blocks.append(f"<{tag}{id_attr}>{_render_inline(content, slots)}</{tag}>")
            continue

        bullet = _LIST_ITEM_RE.match(line)
        if bullet:
            flush_paragraph()
            blocks.append(f"<li>{BULLET} {_render_inline(bullet.group(1), slots)}</li>")
            continue

        paragraph.append(_render_inline(line, slots))

    flush_paragraph()
    return slots.restore("\n".join(blocks))


def _plain_title(text: str) -> str:
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _BOLD_RE.sub(r"\1", text)
    return _ITALIC_RE.sub(r"\1", text).strip()


def extract_headlines(document: str) -> List[Dict[str, str]]:
    """List the anchored ``####`` subtopics of a document for in-page navigation.

    Ids match the ones :func:`render_markdown` emits for the same document.
    """
    anchors = _AnchorAllocator()
    headlines: List[Dict[str, str]] = []
    for item in _split_fences(_normalise(document).split("\n")):
        if item[0] != "text":
            continue
        heading = _HEADING_RE.match(item[1])
        if not heading or len(heading.group(1)) != 4:
            continue
        numeral = _subtopic_numeral(heading.group(2))
        if numeral:
            headlines.append({"id": anchors.allocate(numeral), "title": _plain_title(heading.group(2))})
    return headlines
