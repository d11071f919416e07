"""Defensive HTML tokenizer producing a minimal element tree.

The tokenizer makes a single left-to-right pass with an explicit stack of
open elements. It never raises: malformed tags are skipped and the worst
case is a shallow tree. ``script`` and ``style`` bodies are kept verbatim
so angle brackets inside inline code never turn into elements.
"""

from __future__ import annotations

import html as html_std
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from .errors import ParseRecoverable

logger = logging.getLogger("lite_reader.tokenizer")

VOID_TAGS = frozenset(
    {
        "br",
        "img",
        "hr",
        "meta",
        "link",
        "input",
        "area",
        "base",
        "col",
        "embed",
        "param",
        "source",
        "track",
        "wbr",
    }
)
RAW_TEXT_TAGS = frozenset({"script", "style"})
INLINE_TAGS = frozenset(
    {
        "a",
        "abbr",
        "b",
        "bdi",
        "cite",
        "code",
        "em",
        "font",
        "i",
        "kbd",
        "label",
        "mark",
        "q",
        "s",
        "small",
        "span",
        "strong",
        "sub",
        "sup",
        "time",
        "u",
        "var",
    }
)

# Opening one of these tags ends an open element of the same tag, unless a
# scope boundary sits between them on the stack.
_IMPLIED_END_SCOPE = {
    "p": frozenset(
        {
            "article",
            "aside",
            "blockquote",
            "button",
            "div",
            "li",
            "main",
            "section",
            "table",
            "td",
            "th",
        }
    ),
    "li": frozenset({"ol", "ul", "menu"}),
}

_TAG_NAME = re.compile(r"[a-zA-Z][a-zA-Z0-9:._-]*\Z")
_RAW_TEXT_END = {
    tag: re.compile(r"</%s\s*>" % tag, re.IGNORECASE) for tag in RAW_TEXT_TAGS
}

Node = Union[str, "LiteElement"]


@dataclass(eq=False)
class LiteElement:
    """One element of the lite tree.

    ``nodes`` interleaves text runs and child elements in document order;
    ``children`` and ``text`` are views over it. ``start``/``end`` are the
    offsets of the element's markup in the source string.
    """

    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    self_closing: bool = False
    nodes: List[Node] = field(default_factory=list, repr=False)
    children: List["LiteElement"] = field(default_factory=list, repr=False)
    start: int = field(default=0, repr=False)
    end: int = field(default=0, repr=False)

    @property
    def text(self) -> str:
        return "".join(node for node in self.nodes if isinstance(node, str))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attributes.get(name.lower(), default)

    def append_text(self, chunk: str) -> None:
        if chunk:
            self.nodes.append(chunk)

    def append_child(self, element: "LiteElement") -> None:
        self.children.append(element)
        self.nodes.append(element)

    def __str__(self) -> str:
        return f"<{self.tag}>"


def parse(html: Optional[str]) -> LiteElement:
    """Tokenize ``html`` into a tree rooted at a synthetic ``root`` element."""
    root = LiteElement(tag="root")
    if not html:
        return root
    n = len(html)
    root.end = n
    stack: List[LiteElement] = [root]
    i = 0
    while i < n:
        lt = html.find("<", i)
        if lt < 0:
            stack[-1].append_text(html[i:])
            break
        if lt > i:
            stack[-1].append_text(html[i:lt])
        i = lt

        if html.startswith("<!--", i):
            end = html.find("-->", i + 2)
            if end < 0:
                break
            i = end + 3
            continue

        following = html[i + 1] if i + 1 < n else ""
        if following == "/":
            close = html.find(">", i + 2)
            if close < 0:
                break
            _close_element(stack, html[i + 2 : close], close + 1)
            i = close + 1
            continue
        if following in ("!", "?"):
            gt = html.find(">", i + 2)
            if gt < 0:
                break
            i = gt + 1
            continue
        if not following.isalpha():
            stack[-1].append_text("<")
            i += 1
            continue

        gt = _find_tag_end(html, i + 1)
        if gt < 0:
            break
        try:
            element = _parse_tag(html[i + 1 : gt])
        except ParseRecoverable as exc:
            logger.debug("Skipping malformed tag at offset %d: %s", i, exc)
            i = gt + 1
            continue

        element.start = i
        element.self_closing = element.self_closing or element.tag in VOID_TAGS
        if element.self_closing:
            stack[-1].append_child(element)
            element.end = gt + 1
            i = gt + 1
            continue

        if element.tag in RAW_TEXT_TAGS:
            stack[-1].append_child(element)
            match = _RAW_TEXT_END[element.tag].search(html, gt + 1)
            if match is None:
                element.append_text(html[gt + 1 :])
                element.end = n
                i = n
            else:
                element.append_text(html[gt + 1 : match.start()])
                element.end = match.end()
                i = match.end()
            continue

        _close_implied(stack, element.tag, i)
        stack[-1].append_child(element)
        stack.append(element)
        i = gt + 1

    for element in stack[1:]:
        element.end = n
    return root


def _find_tag_end(html: str, start: int) -> int:
    """Find the ``>`` closing a start tag, skipping quoted attribute values."""
    quote = ""
    previous = ""
    for index in range(start, len(html)):
        char = html[index]
        if quote:
            if char == quote:
                quote = ""
        elif char in ("'", '"') and previous == "=":
            quote = char
        elif char == ">":
            return index
        if not char.isspace():
            previous = char
    # unbalanced quote: fall back to the first '>'
    return html.find(">", start)


def _close_implied(stack: List[LiteElement], tag: str, end: int) -> None:
    """Close an open ``p`` or ``li`` that a new sibling of the same tag ends."""
    boundaries = _IMPLIED_END_SCOPE.get(tag)
    if boundaries is None:
        return
    for depth in range(len(stack) - 1, 0, -1):
        open_tag = stack[depth].tag
        if open_tag == tag:
            for element in stack[depth:]:
                element.end = end
            del stack[depth:]
            return
        if open_tag in boundaries:
            return


def _close_element(stack: List[LiteElement], inside: str, end: int) -> None:
    parts = inside.split()
    if not parts:
        return
    name = parts[0].lower()
    for depth in range(len(stack) - 1, 0, -1):
        if stack[depth].tag == name:
            for element in stack[depth:]:
                element.end = end
            del stack[depth:]
            return
    logger.debug("Ignoring unmatched closing tag </%s>", name)


def _parse_tag(inside: str) -> LiteElement:
    n = len(inside)
    i = 0
    while i < n and inside[i].isspace():
        i += 1
    start = i
    while i < n and not inside[i].isspace() and inside[i] != "/":
        i += 1
    tag = inside[start:i]
    if not _TAG_NAME.match(tag):
        raise ParseRecoverable(f"invalid tag name {tag!r}")

    element = LiteElement(tag=tag.lower())
    while i < n:
        while i < n and inside[i].isspace():
            i += 1
        if i >= n:
            break
        if inside[i] == "/":
            element.self_closing = True
            i += 1
            continue
        name_start = i
        while i < n and not inside[i].isspace() and inside[i] not in "=/":
            i += 1
        name = inside[name_start:i]
        value = ""
        while i < n and inside[i].isspace():
            i += 1
        if i < n and inside[i] == "=":
            i += 1
            while i < n and inside[i].isspace():
                i += 1
            if i < n and inside[i] in ("'", '"'):
                quote = inside[i]
                i += 1
                value_start = i
                while i < n and inside[i] != quote:
                    i += 1
                value = inside[value_start:i]
                i += 1
            else:
                value_start = i
                while i < n and not inside[i].isspace():
                    i += 1
                value = inside[value_start:i]
                if i >= n and value.endswith("/") and element.tag in VOID_TAGS:
                    value = value[:-1]
        if name.strip():
            element.attributes[name.lower()] = html_std.unescape(value)
        elif i == name_start:
            i += 1
    return element


def iter_elements(
    root: LiteElement,
    prune: Optional[Callable[[LiteElement], bool]] = None,
) -> Iterator[LiteElement]:
    """Yield descendants of ``root`` in document order.

    Elements for which ``prune`` returns true are yielded but not descended into.
    """
    pending: List[LiteElement] = list(reversed(root.children))
    while pending:
        element = pending.pop()
        yield element
        if prune is not None and prune(element):
            continue
        pending.extend(reversed(element.children))


def find_all(root: LiteElement, tags: Iterable[str]) -> List[LiteElement]:
    wanted = frozenset(tags)
    return [element for element in iter_elements(root) if element.tag in wanted]


def find_first(root: LiteElement, *tags: str) -> Optional[LiteElement]:
    wanted = frozenset(tags)
    for element in iter_elements(root):
        if element.tag in wanted:
            return element
    return None


def inner_text(
    element: LiteElement,
    skip: Optional[Callable[[LiteElement], bool]] = None,
) -> str:
    """Flatten the text below ``element`` in document order.

    ``script``/``style`` bodies are never included. Block-level boundaries
    become spaces so adjacent blocks do not run together.
    """
    pieces: List[str] = []
    pending: List[Union[Node, None]] = list(reversed(element.nodes))
    while pending:
        node = pending.pop()
        if node is None:
            pieces.append(" ")
            continue
        if isinstance(node, str):
            pieces.append(node)
            continue
        if node.tag in RAW_TEXT_TAGS or (skip is not None and skip(node)):
            pieces.append(" ")
            continue
        if node.tag in INLINE_TAGS:
            pending.extend(reversed(node.nodes))
        else:
            pending.append(None)
            pending.extend(reversed(node.nodes))
            pending.append(None)
    return "".join(pieces)


def raw_length(element: LiteElement) -> int:
    return max(0, element.end - element.start)
