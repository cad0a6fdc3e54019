"""Pattern detection over source snippets.

Each rule is an independent predicate over a lightweight line scan (no
parsing): indentation for Python, brace depth for JavaScript/TypeScript.
Rules never see each other's results, and a line may trip several rules.
Severity is fixed per rule.

Unsupported languages produce no findings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

from mentorlens.models import PatternFinding

RULES_VERSION = "2024.1"

LANGUAGE_ALIASES = {
    "python": "python",
    "py": "python",
    "javascript": "javascript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "typescript": "typescript",
    "ts": "typescript",
    "tsx": "typescript",
}


_STRING_LITERAL = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'|`(?:\\.|[^`\\])*`')

# Calls that can raise/reject and usually deserve handling
_PY_FALLIBLE = re.compile(
    r"\b(?:open|urlopen|requests\.(?:get|post|put|patch|delete|head|request)"
    r"|httpx\.(?:get|post|put|patch|delete|request)|json\.loads?"
    r"|subprocess\.(?:run|check_output|check_call|Popen)|socket\.create_connection)\("
)
_JS_FALLIBLE = re.compile(
    r"\b(?:fetch|axios\.(?:get|post|put|patch|delete|request)|JSON\.parse"
    r"|fs\.(?:readFileSync|writeFileSync|readFile|writeFile))\(|\bawait\s+[\w.$]+\("
)

_PY_TRY = re.compile(r"^try\s*:")
_PY_DEF = re.compile(r"^(?:async\s+)?def\s+\w+")
_PY_LOOP = re.compile(r"^(?:async\s+)?(?:for|while)\b.*:\s*$")
_PY_LINEAR_SCAN = re.compile(r"\.(?:index|count|remove)\(|[\[(].*\bfor\b.+\bin\b")
_PY_BARE_EXCEPT = re.compile(r"^except\s*:")
_PY_BROAD_EXCEPT = re.compile(r"^except\s+(?:Exception|BaseException)\b[^:]*:\s*(pass)?\s*$")
_PY_MUTABLE_DEFAULT = re.compile(
    r"^(?:async\s+)?def\s+\w+\(.*=\s*(?:\[\s*\]|\{\s*\}|list\(\)|dict\(\)|set\(\))"
)

_JS_FUNCTION_HEAD = r"(?:async\s+)?(?:function\s*\w*\s*\([^()]*\)|\([^()]*\)\s*=>|[\w$]+\s*=>)\s*"
_JS_CALLBACK_OPEN = re.compile(rf"[(,]\s*{_JS_FUNCTION_HEAD}$")
_JS_LOOP_OPEN = re.compile(
    rf"(?:\b(?:for|while)\s*\(.*\)\s*|\bdo\s*"
    rf"|\.(?:forEach|map|filter|reduce|some|every|flatMap)\(\s*{_JS_FUNCTION_HEAD})$"
)
_JS_LINEAR_SCAN = re.compile(r"\.(?:indexOf|includes|find|findIndex|lastIndexOf)\(")
_JS_TRY_OPEN = re.compile(r"\btry\s*$")
_JS_EMPTY_CATCH = re.compile(r"\bcatch\s*(?:\([^)]*\))?\s*\{\s*\}")
_JS_CATCH_OPEN = re.compile(r"\bcatch\s*(?:\([^)]*\))?\s*\{\s*$")
_JS_LOOSE_EQ = re.compile(r"(?<![=!<>])==(?!=)|!=(?!=)")
_JS_NULL_CMP = re.compile(r"[!=]=\s*null\b|\bnull\s*[!=]=")

_CONFIG_LITERALS = [
    re.compile(r"[\"'`](?:https?|postgres(?:ql)?|mysql|redis|mongodb|amqp)://", re.IGNORECASE),
    re.compile(r"[\"'`]\d{1,3}(?:\.\d{1,3}){3}(?::\d+)?[\"'`]"),
    re.compile(
        r"\b\w*(?:api[_-]?key|secret|password|passwd|token)\w*[\"'`]?\s*[:=]\s*[\"'`][^\"'`]{4,}[\"'`]",
        re.IGNORECASE,
    ),
    re.compile(r"\bport\s*[:=]\s*\d{2,5}\b", re.IGNORECASE),
]

CALLBACK_DEPTH_LIMIT = 3
THEN_LOOKAHEAD = 5  # lines scanned for a .catch() after a .then()


@dataclass(frozen=True)
class _Line:
    number: int  # 1-based
    raw: str
    code: str  # strings blanked, comments removed
    indent: int


Check = Callable[[list[_Line]], list[tuple[int, str]]]


@dataclass(frozen=True)
class Rule:
    pattern_type: str
    severity: float
    checks: dict[str, Check]  # language -> predicate returning (line, message) hits


def normalize_language(language: str) -> str | None:
    return LANGUAGE_ALIASES.get(language.strip().lower())


def detect_patterns(source: str, language: str) -> list[PatternFinding]:
    """Run every rule for the language and return the union of their findings."""
    lang = normalize_language(language)
    if lang is None:
        return []

    lines = _scan(source, lang)
    findings: list[PatternFinding] = []
    for rule in RULES:
        check = rule.checks.get(lang)
        if check is None:
            continue
        for line_no, message in check(lines):
            findings.append(
                PatternFinding(
                    pattern_type=rule.pattern_type,
                    line_range=(line_no, line_no),
                    severity=rule.severity,
                    message=message,
                )
            )
    findings.sort(key=lambda f: (f.line_range, f.pattern_type))
    return findings


def _scan(source: str, lang: str) -> list[_Line]:
    comment = "#" if lang == "python" else "//"
    lines: list[_Line] = []
    in_block = False
    for number, raw in enumerate(source.splitlines(), 1):
        if lang == "python":
            # Docstrings behave like block comments for scanning purposes
            code, in_block = _strip_blocks(raw, in_block, '"""', '"""')
            code = _STRING_LITERAL.sub('""', code)
        else:
            code = _STRING_LITERAL.sub('""', raw)
            code, in_block = _strip_blocks(code, in_block, "/*", "*/")
        if comment in code:
            code = code[: code.index(comment)]
        lines.append(
            _Line(
                number=number,
                raw=raw,
                code=code.rstrip(),
                indent=len(raw) - len(raw.lstrip()),
            )
        )
    return lines


def _strip_blocks(code: str, in_block: bool, opener: str, closer: str) -> tuple[str, bool]:
    """Drop text between opener/closer pairs, which may span lines."""
    out: list[str] = []
    i = 0
    while i < len(code):
        if in_block:
            end = code.find(closer, i)
            if end == -1:
                return "".join(out), True
            i = end + len(closer)
            in_block = False
        else:
            start = code.find(opener, i)
            if start == -1:
                out.append(code[i:])
                break
            out.append(code[i:start])
            i = start + len(opener)
            in_block = True
    return "".join(out), in_block


# -- Python rules --------------------------------------------------------------


def _py_missing_error_handling(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    try_indents: list[int] = []
    for line in lines:
        stripped = line.code.strip()
        if not stripped:
            continue
        while try_indents and line.indent <= try_indents[-1]:
            try_indents.pop()
        if _PY_TRY.match(stripped):
            try_indents.append(line.indent)
            continue
        match = _PY_FALLIBLE.search(line.code)
        if match and not try_indents:
            hits.append((line.number, f"{match.group(0)[:-1]}() can fail and is not inside a try block"))
    return hits


def _py_broad_exception(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    code_lines = [line for line in lines if line.code.strip()]
    for i, line in enumerate(code_lines):
        stripped = line.code.strip()
        if _PY_BARE_EXCEPT.match(stripped):
            hits.append((line.number, "bare except swallows every error, including KeyboardInterrupt"))
            continue
        match = _PY_BROAD_EXCEPT.match(stripped)
        if not match:
            continue
        next_code = code_lines[i + 1].code.strip() if i + 1 < len(code_lines) else ""
        if match.group(1) or next_code == "pass":
            hits.append((line.number, "broad exception is caught and silently ignored"))
    return hits


def _py_nesting(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    def_indents: list[int] = []
    for line in lines:
        stripped = line.code.strip()
        if not stripped:
            continue
        while def_indents and line.indent <= def_indents[-1]:
            def_indents.pop()
        if _PY_DEF.match(stripped):
            def_indents.append(line.indent)
            if len(def_indents) >= CALLBACK_DEPTH_LIMIT:
                hits.append((line.number, f"closure nested {len(def_indents)} levels deep"))
    return hits


def _py_nested_scan(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    loop_indents: list[int] = []
    for line in lines:
        stripped = line.code.strip()
        if not stripped:
            continue
        while loop_indents and line.indent <= loop_indents[-1]:
            loop_indents.pop()
        if _PY_LOOP.match(stripped):
            if loop_indents:
                hits.append((line.number, "loop nested inside another loop"))
            loop_indents.append(line.indent)
            continue
        if loop_indents and _PY_LINEAR_SCAN.search(stripped):
            hits.append((line.number, "linear scan inside a loop"))
    return hits


def _py_mutable_default(lines: list[_Line]) -> list[tuple[int, str]]:
    return [
        (line.number, "mutable default argument is shared between calls")
        for line in lines
        if _PY_MUTABLE_DEFAULT.match(line.code.strip())
    ]


# -- JavaScript / TypeScript rules --------------------------------------------


@dataclass
class _BraceState:
    """Brace depth plus stacks of the depths at which tracked blocks opened."""

    depth: int = 0
    trys: list[int] = field(default_factory=list)
    callbacks: list[int] = field(default_factory=list)
    loops: list[int] = field(default_factory=list)


def _walk_braces(lines: list[_Line]):
    """Yield (line, inside_try, inside_loop, events) for each line.

    inside_loop reflects the state at the start of the line; inside_try also
    counts a try block opened on the line itself. events lists the blocks
    opened on the line as (kind, n): the callback nesting depth for
    "callback", the number of enclosing loops for "loop".
    """
    state = _BraceState()
    for line in lines:
        inside_try = bool(state.trys)
        inside_loop = bool(state.loops)
        events: list[tuple[str, int]] = []
        code = line.code
        for i, ch in enumerate(code):
            if ch == "{":
                head = code[:i].rstrip()
                state.depth += 1
                if _JS_TRY_OPEN.search(head):
                    state.trys.append(state.depth)
                    events.append(("try", state.depth))
                if _JS_CALLBACK_OPEN.search(head):
                    state.callbacks.append(state.depth)
                    events.append(("callback", len(state.callbacks)))
                if _JS_LOOP_OPEN.search(head):
                    events.append(("loop", len(state.loops)))
                    state.loops.append(state.depth)
            elif ch == "}":
                for stack in (state.trys, state.callbacks, state.loops):
                    if stack and stack[-1] == state.depth:
                        stack.pop()
                state.depth = max(state.depth - 1, 0)
        yield line, inside_try or bool(state.trys), inside_loop, events


def _js_missing_error_handling(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for line, inside_try, _loop, _events in _walk_braces(lines):
        match = _JS_FALLIBLE.search(line.code)
        if not match or inside_try or ".catch(" in line.code:
            continue
        call = match.group(0).rstrip("(")
        hits.append((line.number, f"{call}() can fail and is not inside a try block"))
    return hits


def _js_nesting(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for line, _try, _loop, events in _walk_braces(lines):
        depths = [depth for kind, depth in events if kind == "callback"]
        if depths and max(depths) >= CALLBACK_DEPTH_LIMIT:
            hits.append((line.number, f"callback nested {max(depths)} levels deep"))
    return hits


def _js_nested_scan(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for line, _try, inside_loop, events in _walk_braces(lines):
        # A loop opened while another loop was already open
        if any(kind == "loop" and outer > 0 for kind, outer in events):
            hits.append((line.number, "loop nested inside another loop"))
        elif inside_loop and _JS_LINEAR_SCAN.search(line.code):
            hits.append((line.number, "linear scan inside a loop"))
    return hits


def _js_empty_catch(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    code_lines = [line for line in lines if line.code.strip()]
    for i, line in enumerate(code_lines):
        if _JS_EMPTY_CATCH.search(line.code):
            hits.append((line.number, "catch block is empty"))
        elif _JS_CATCH_OPEN.search(line.code):
            if i + 1 < len(code_lines) and code_lines[i + 1].code.strip().startswith("}"):
                hits.append((line.number, "catch block is empty"))
    return hits


def _js_loose_equality(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for line in lines:
        code = _JS_NULL_CMP.sub("", line.code)
        if _JS_LOOSE_EQ.search(code):
            hits.append((line.number, "loose equality coerces types; use === or !=="))
    return hits


def _js_unhandled_then(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for i, line in enumerate(lines):
        if ".then(" not in line.code:
            continue
        chain = []
        for follower in lines[i : i + THEN_LOOKAHEAD]:
            chain.append(follower.code)
            if follower.code.rstrip().endswith(";"):
                break
        if ".catch(" not in "".join(chain):
            hits.append((line.number, "promise chain has no .catch()"))
    return hits


# -- language-independent rules -----------------------------------------------


def _hardcoded_configuration(lines: list[_Line]) -> list[tuple[int, str]]:
    hits: list[tuple[int, str]] = []
    for line in lines:
        if not line.code.strip():
            continue  # comment-only line
        if any(pattern.search(line.raw) for pattern in _CONFIG_LITERALS):
            hits.append((line.number, "literal value belongs in configuration"))
    return hits


def _per_language(python: Check | None = None, js: Check | None = None) -> dict[str, Check]:
    checks: dict[str, Check] = {}
    if python is not None:
        checks["python"] = python
    if js is not None:
        checks["javascript"] = js
        checks["typescript"] = js
    return checks


RULES: list[Rule] = [
    Rule(
        "missing-error-handling", 0.8,
        _per_language(_py_missing_error_handling, _js_missing_error_handling),
    ),
    Rule("broad-exception-catch", 0.6, _per_language(python=_py_broad_exception)),
    Rule("empty-catch-block", 0.6, _per_language(js=_js_empty_catch)),
    Rule("deep-callback-nesting", 0.7, _per_language(_py_nesting, _js_nesting)),
    Rule("nested-linear-scan", 0.7, _per_language(_py_nested_scan, _js_nested_scan)),
    Rule(
        "hardcoded-configuration", 0.5,
        _per_language(_hardcoded_configuration, _hardcoded_configuration),
    ),
    Rule("mutable-default-argument", 0.6, _per_language(python=_py_mutable_default)),
    Rule("loose-equality", 0.4, _per_language(js=_js_loose_equality)),
    Rule("unawaited-promise", 0.5, _per_language(js=_js_unhandled_then)),
]
