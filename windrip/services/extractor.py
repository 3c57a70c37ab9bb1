"""Static class extraction from raw template text.

Nothing here parses markup. Each supported attribute syntax is an
``ExtractionRule``: a regex locating the attribute plus a function turning
one match into raw candidate strings. ``extract_classes`` runs every rule in
``RULES`` and keeps the tokens that look like utility class names, so a new
syntax only needs a new rule appended to ``RULES``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Set, Tuple

CLASS_TOKEN_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_\-:]*$")

# Attributes binding an expression to the class list (Vue, Alpine, Angular).
_DIRECTIVE = r"(?:v-bind:class|x-bind:class|:class|\[ngClass\]|\[class\]|ng-class)"
# An attribute name must not be the tail of a longer name (data-class, :class, ...).
_ATTR_START = r"(?<![\w\-:.@\[])"

# Server-side template blocks that can sit inside a plain class attribute.
_TEMPLATE_BLOCK_RE = re.compile(r"<\?.*?\?>|\{\{.*?\}\}|\{%.*?%\}", re.DOTALL)
_QUOTED_RE = re.compile(r"'((?:[^'\\\n]|\\.)*)'|\"((?:[^\"\\\n]|\\.)*)\"")
_BACKTICK_RE = re.compile(r"`([^`]*)`")
_SPLIT_RE = re.compile(r"[\s,'\"]+")

Normalizer = Callable[["re.Match[str]", str], Iterable[str]]


def is_valid_class(token: str) -> bool:
    return bool(token) and CLASS_TOKEN_RE.match(token) is not None


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    pattern: "re.Pattern[str]"
    normalize: Normalizer

    def candidates(self, content: str) -> Iterator[str]:
        """Yield raw candidate strings for every match; not yet split or validated."""
        for match in self.pattern.finditer(content):
            for fragment in self.normalize(match, content):
                if fragment:
                    yield fragment


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the ``}`` closing the ``{`` at ``start``; string literals are skipped."""
    depth = 0
    quote: Optional[str] = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return None


def _interpolation_spans(text: str) -> Iterator[Tuple[int, int]]:
    i = text.find("${")
    while i != -1:
        end = _balanced_end(text, i + 1)
        if end is None:
            yield i, len(text)
            return
        yield i, end
        i = text.find("${", end)


def strip_interpolations(text: str) -> str:
    """Replace every ``${...}`` sub-expression with whitespace."""
    out: List[str] = []
    cursor = 0
    for start, end in _interpolation_spans(text):
        out.append(text[cursor:start])
        out.append(" ")
        cursor = end
    out.append(text[cursor:])
    return "".join(out)


def _quoted_literals(text: str) -> Iterator[str]:
    for match in _QUOTED_RE.finditer(text):
        yield match.group(1) if match.group(1) is not None else match.group(2)


def _split_top_level(text: str, sep: str) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    quote: Optional[str] = None
    for ch in text:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return parts


def _object_keys(body: str) -> Iterator[str]:
    """Keys of an object literal body; the values are never looked at."""
    for entry in _split_top_level(body, ","):
        key = _split_top_level(entry, ":")[0].strip()
        if len(key) >= 2 and key[0] == key[-1] and key[0] in ("'", '"', "`"):
            yield key[1:-1]
        elif key and not key.startswith(("[", "...")):
            yield key


def _expression_fragments(expression: str) -> Iterator[str]:
    """Best-effort literal fragments of an arbitrary expression."""
    for literal in _BACKTICK_RE.findall(expression):
        yield strip_interpolations(literal)
        for start, end in _interpolation_spans(literal):
            yield from _quoted_literals(literal[start + 2 : end - 1])
    yield from _quoted_literals(_BACKTICK_RE.sub(" ", expression))


def _braced_expression(match: "re.Match[str]", content: str) -> Optional[str]:
    brace = match.end() - 1
    end = _balanced_end(content, brace)
    if end is None:
        return None
    return content[brace + 1 : end - 1].strip()


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _class_attribute(match: "re.Match[str]", _content: str) -> Iterable[str]:
    value = match.group("dq") if match.group("dq") is not None else match.group("sq")
    literals: List[str] = []

    def _reduce(block: "re.Match[str]") -> str:
        literals.extend(_quoted_literals(block.group(0)))
        return " "

    return [_TEMPLATE_BLOCK_RE.sub(_reduce, value), *literals]


def _directive_literal(match: "re.Match[str]", _content: str) -> Iterable[str]:
    return [match.group("dq") if match.group("dq") is not None else match.group("sq")]


def _directive_object(match: "re.Match[str]", content: str) -> Iterable[str]:
    body = _braced_expression(match, content)
    if body is None:
        return []
    return list(_object_keys(body))


def _class_directive(match: "re.Match[str]", _content: str) -> Iterable[str]:
    return [match.group("name")]


def _template_literal(match: "re.Match[str]", _content: str) -> Iterable[str]:
    body = match.group("braced") if match.group("braced") is not None else match.group("quoted")
    return [strip_interpolations(body)]


def _dynamic_expression(match: "re.Match[str]", content: str) -> Iterable[str]:
    if match.group("dq") is not None or match.group("sq") is not None:
        expression = (match.group("dq") if match.group("dq") is not None else match.group("sq")).strip()
    else:
        expression = _braced_expression(match, content)
    if not expression or expression.startswith("{"):
        # object literals belong to directive_object
        return []
    return list(_expression_fragments(expression))


RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(
        name="class_attribute",
        pattern=re.compile(
            _ATTR_START
            + r"(?:class|className)\s*=\s*"
            + r"(?:\"(?P<dq>(?:<\?.*?\?>|\{\{.*?\}\}|\{%.*?%\}|[^\"])*)\""
            + r"|'(?P<sq>(?:<\?.*?\?>|[^'])*)')",
            re.DOTALL,
        ),
        normalize=_class_attribute,
    ),
    ExtractionRule(
        name="directive_literal",
        pattern=re.compile(
            _ATTR_START + _DIRECTIVE + r"\s*=\s*(?:\"\s*'(?P<dq>[^'\"]*)'\s*\"|'\s*\"(?P<sq>[^'\"]*)\"\s*')"
        ),
        normalize=_directive_literal,
    ),
    ExtractionRule(
        name="directive_object",
        pattern=re.compile(_ATTR_START + _DIRECTIVE + r"\s*=\s*[\"']?\s*\{"),
        normalize=_directive_object,
    ),
    ExtractionRule(
        name="class_directive",
        pattern=re.compile(r"(?<![\w\-.:$@/])class:(?P<name>[A-Za-z0-9_][A-Za-z0-9_\-:]*)(?=[\s=/>]|$)"),
        normalize=_class_directive,
    ),
    ExtractionRule(
        name="template_literal",
        pattern=re.compile(
            _ATTR_START
            + r"(?:className|class|"
            + _DIRECTIVE
            + r")\s*=\s*(?:\{\s*`(?P<braced>[^`]*)`\s*\}|\"\s*`(?P<quoted>[^`]*)`\s*\")"
        ),
        normalize=_template_literal,
    ),
    ExtractionRule(
        name="dynamic_expression",
        pattern=re.compile(
            _ATTR_START
            + r"(?:"
            + _DIRECTIVE
            + r"\s*=\s*(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)')"
            + r"|(?:className|class)\s*=\s*\{)"
        ),
        normalize=_dynamic_expression,
    ),
)


def split_candidates(raw: str) -> Iterator[str]:
    """Split a raw candidate on whitespace, commas and stray quotes."""
    for token in _SPLIT_RE.split(raw):
        if token:
            yield token


def extract_classes(content: str, rules: Iterable[ExtractionRule] = RULES) -> Set[str]:
    """Return every valid class name any rule finds in ``content``."""
    classes: Set[str] = set()
    if not content:
        return classes
    for rule in rules:
        for raw in rule.candidates(content):
            classes.update(token for token in split_candidates(raw) if is_valid_class(token))
    return classes


def rule_by_name(name: str) -> ExtractionRule:
    for rule in RULES:
        if rule.name == name:
            return rule
    raise KeyError(name)


__all__ = [
    "CLASS_TOKEN_RE",
    "ExtractionRule",
    "RULES",
    "extract_classes",
    "is_valid_class",
    "rule_by_name",
    "split_candidates",
    "strip_interpolations",
]
