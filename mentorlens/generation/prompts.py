"""Prompt templates and response parsing for each generation kind.

Everything here is a pure function of its inputs: rendering, parsing the
strict `## SECTION` response format, and the local fallback text used when
the generation service cannot be reached.
"""

from __future__ import annotations

import re
from enum import Enum

from mentorlens.errors import MalformedGeneration
from mentorlens.models import SkillLevel


class GenerationKind(str, Enum):
    PREDICTION = "prediction"
    MENTAL_MODEL = "mental_model"
    STORYTELLING = "storytelling"
    CHALLENGES = "challenges"


MAX_CODE_CHARS = 4000
MAX_FINDINGS_IN_PROMPT = 10
MAX_COMMITS_IN_PROMPT = 15
MAX_RATIONALE_CHARS = 600
MAX_LINE_CHARS = 200  # summaries, descriptions, names and other one-line fields
MAX_CONCEPTS_IN_PROMPT = 10
MAX_PROMPT_CHARS = 12000

REQUIRED_SECTIONS: dict[GenerationKind, list[str]] = {
    GenerationKind.PREDICTION: ["PREDICTION", "QUESTION", "MENTAL MODEL"],
    GenerationKind.MENTAL_MODEL: ["MENTAL MODEL"],
    GenerationKind.STORYTELLING: ["NARRATIVE"],
    GenerationKind.CHALLENGES: [],  # validated per CHALLENGE block instead
}

LEVEL_GUIDANCE = {
    SkillLevel.JUNIOR: (
        "The developer is junior. Define any term you use, give one concrete "
        "analogy, and keep each step small."
    ),
    SkillLevel.MID_LEVEL: (
        "The developer is mid-level. Be concise, skip the basics, and focus on "
        "trade-offs and edge cases."
    ),
}

PREDICTION_PROMPT = """\
You are a mentor who predicts the mistake a developer is about to make in the \
code below, before they make it. {guidance}

## Code ({language})
{code}

## Signals found by static checks
{findings}

## Instructions

Respond with exactly these three sections and nothing else:

## PREDICTION
One or two sentences naming the most likely mistake and where it is.

## QUESTION
One question that makes the developer discover the mistake themselves.

## MENTAL MODEL
A short explanation of the underlying concept that prevents this class of mistake.
"""

MENTAL_MODEL_PROMPT = """\
You are a mentor explaining the concept "{concept}" using the developer's own \
code as the example. {guidance}

## Code ({language})
{code}

## Instructions

Respond with exactly one section and nothing else:

## MENTAL MODEL
An explanation of how to think about {concept}, tied to the code above.
"""

STORYTELLING_PROMPT = """\
You are a senior engineer telling the story of how a piece of code came to look \
the way it does. {guidance}

## File
{path}

## Selected code
{selected_code}

## Commits (oldest first)
{commits}

## Decisions derived from the commits
{decisions}

{history_note}

## Instructions

Tell the story chronologically. Where a decision has no recorded rationale, \
infer the most likely reason from the commit and say that it is inferred.

Respond with exactly one section and nothing else:

## NARRATIVE
The story, in prose.
"""

CHALLENGES_PROMPT = """\
You are a mentor writing short practice challenges for concepts a developer is \
weak in. {guidance}

## Weak concepts (highest need first)
{concepts}

## Code the weaknesses were found in
{code}

## Instructions

Write one challenge per concept, in the order given. Use this exact format for \
each one and nothing else:

## CHALLENGE
Concept: <concept id from the list>
Title: <short title>
Task: <what to build or fix, one paragraph>
Hint: <one hint>
"""

# Generic explanations used when generation is unavailable
GENERIC_MENTAL_MODELS = {
    "error-handling": (
        "Every call that touches the outside world (files, network, parsing) can "
        "fail. Decide at each such call who handles the failure, and make that "
        "choice visible in the code."
    ),
    "async-control-flow": (
        "Asynchronous code runs later, not in line order. Keep continuations flat, "
        "give every asynchronous chain an error path, and await what you start."
    ),
    "algorithmic-complexity": (
        "A loop inside a loop multiplies work. When an inner step searches a list, "
        "an index built once (a set or dict) usually turns that search into a lookup."
    ),
    "configuration-management": (
        "Values that change between environments (hosts, ports, credentials) belong "
        "in configuration, not in code. Code should read them, not contain them."
    ),
    "language-semantics": (
        "Some language rules surprise people: shared default values, implicit type "
        "coercion. Prefer the explicit form so the code means exactly what it says."
    ),
}
GENERIC_MENTAL_MODEL = (
    "Before committing, trace what this code does with missing, empty and invalid "
    "input, and what happens when each external call fails."
)
GENERIC_QUESTION = "What happens to this code when its inputs are missing, empty or invalid?"

GENERIC_TASKS = {
    "error-handling": "Wrap each fallible call in the snippet with explicit handling and decide what the caller should see on failure.",
    "async-control-flow": "Flatten the nested continuations into sequential async steps with a single error path.",
    "algorithmic-complexity": "Remove the nested scan by building a lookup structure once before the loop.",
    "configuration-management": "Move every environment-specific literal into configuration loaded at startup.",
    "language-semantics": "Rewrite the flagged expressions in their explicit, unambiguous form.",
}
GENERIC_TASK = "Rewrite the flagged lines so that the concern they raise is handled explicitly."

_SECTION_HEADER = re.compile(r"^##\s*(.+?)\s*$", re.MULTILINE)
_FIELD_LINE = re.compile(r"^(Concept|Title|Task|Hint)\s*:\s*", re.IGNORECASE | re.MULTILINE)


def render_prompt(kind: GenerationKind, payload: dict, level: SkillLevel) -> str:
    """Render the prompt for a request. Every variable part is length-bounded."""
    return _cap(_render(kind, payload, LEVEL_GUIDANCE[level]))


def _render(kind: GenerationKind, payload: dict, guidance: str) -> str:
    language = _line(payload.get("language", "unknown"))
    if kind == GenerationKind.PREDICTION:
        return PREDICTION_PROMPT.format(
            guidance=guidance,
            language=language,
            code=_bound(payload.get("code", ""), MAX_CODE_CHARS),
            findings=_format_findings(payload.get("findings", [])),
        )
    if kind == GenerationKind.MENTAL_MODEL:
        return MENTAL_MODEL_PROMPT.format(
            guidance=guidance,
            concept=_line(payload.get("concept_name", payload.get("concept_id", ""))),
            language=language,
            code=_bound(payload.get("code", "") or "(no code provided)", MAX_CODE_CHARS),
        )
    if kind == GenerationKind.STORYTELLING:
        note = ""
        if not payload.get("complete", True):
            note = "Note: history retrieval was cut short; older commits may be missing."
        return STORYTELLING_PROMPT.format(
            guidance=guidance,
            path=_line(payload.get("path", "")),
            selected_code=_bound(payload.get("selected_code", ""), MAX_CODE_CHARS),
            commits=_format_commits(payload.get("commits", [])),
            decisions=_format_decisions(payload.get("decisions", [])),
            history_note=note,
        )
    if kind == GenerationKind.CHALLENGES:
        return CHALLENGES_PROMPT.format(
            guidance=guidance,
            concepts=_format_concepts(payload.get("concepts", [])),
            code=_bound(payload.get("code", ""), MAX_CODE_CHARS),
        )
    raise ValueError(f"Unknown generation kind: {kind}")


def parse_sections(kind: GenerationKind, text: str) -> dict:
    """Parse a response in the strict section format.

    Returns section name -> text, or {"challenges": [...]} for challenge
    generation. Raises MalformedGeneration when anything required is missing.
    """
    text = _strip_fences(text)
    sections = _split_sections(text)

    if kind == GenerationKind.CHALLENGES:
        challenges = [_parse_challenge(body) for name, body in sections if name == "CHALLENGE"]
        if not challenges:
            raise MalformedGeneration("Response has no CHALLENGE sections", text)
        for i, challenge in enumerate(challenges, 1):
            missing = [f for f in ("title", "task") if not challenge.get(f)]
            if missing:
                raise MalformedGeneration(
                    f"CHALLENGE {i} is missing {', '.join(missing)}", text
                )
        return {"challenges": challenges}

    found = {name: body for name, body in sections if body}
    missing = [name for name in REQUIRED_SECTIONS[kind] if name not in found]
    if missing:
        raise MalformedGeneration(f"Response is missing section(s): {', '.join(missing)}", text)
    return {name: found[name] for name in REQUIRED_SECTIONS[kind]}


def fallback_sections(kind: GenerationKind, payload: dict) -> dict:
    """Deterministic, non-personalized response used when generation fails."""
    if kind == GenerationKind.PREDICTION:
        findings = payload.get("findings", [])
        concepts = payload.get("concepts", [])
        if findings:
            # The most severe finding backs the reported confidence
            top = max(findings, key=lambda f: f["severity"])
            prediction = (
                f"Line {top['line']} may be a problem: {top['message'] or top['pattern_type']}."
            )
        else:
            prediction = "No specific risk was detected; review error paths and edge cases before committing."
        concept_id = concepts[0]["id"] if concepts else ""
        return {
            "PREDICTION": prediction,
            "QUESTION": GENERIC_QUESTION,
            "MENTAL MODEL": GENERIC_MENTAL_MODELS.get(concept_id, GENERIC_MENTAL_MODEL),
        }
    if kind == GenerationKind.MENTAL_MODEL:
        return {
            "MENTAL MODEL": GENERIC_MENTAL_MODELS.get(
                payload.get("concept_id", ""), GENERIC_MENTAL_MODEL
            )
        }
    if kind == GenerationKind.STORYTELLING:
        return {"NARRATIVE": _local_narrative(payload)}
    if kind == GenerationKind.CHALLENGES:
        return {
            "challenges": [
                {
                    "concept": c["id"],
                    "title": f"Practice: {c['name']}",
                    "task": GENERIC_TASKS.get(c["id"], GENERIC_TASK),
                    "hint": GENERIC_MENTAL_MODELS.get(c["id"], GENERIC_MENTAL_MODEL),
                }
                for c in payload.get("concepts", [])
            ]
        }
    raise ValueError(f"Unknown generation kind: {kind}")


def _split_sections(text: str) -> list[tuple[str, str]]:
    headers = list(_SECTION_HEADER.finditer(text))
    sections: list[tuple[str, str]] = []
    for i, match in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        name = re.sub(r"\s*\d+$", "", match.group(1).strip().upper())
        sections.append((name, text[match.end():end].strip()))
    return sections


def _parse_challenge(body: str) -> dict[str, str]:
    fields: dict[str, str] = {}
    matches = list(_FIELD_LINE.finditer(body))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
        fields[match.group(1).lower()] = body[match.end():end].strip()
    return fields


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def _local_narrative(payload: dict) -> str:
    commits = payload.get("commits", [])
    decisions = payload.get("decisions", [])
    path = payload.get("path", "this code")
    if not commits:
        return f"No recorded history was found for the selected lines of {path}."

    lines = [
        f"The selected lines of {path} were touched by {len(commits)} commit(s), "
        f"{len(decisions)} of which record a decision."
    ]
    for d in decisions:
        sentence = f"On {d['date']}, a {d['category']} change: {_line(d['description'])}"
        if d.get("rationale"):
            sentence += f" ({_bound(d['rationale'], MAX_RATIONALE_CHARS)})"
        lines.append(sentence + ".")
    if not payload.get("complete", True):
        lines.append("History retrieval was cut short, so older changes may be missing.")
    return " ".join(lines)


def _format_findings(findings: list[dict]) -> str:
    if not findings:
        return "(no static signals)"
    lines = [
        f"- line {f['line']}: {f['pattern_type']} (severity {f['severity']:.1f}) {_line(f.get('message', ''))}".rstrip()
        for f in findings[:MAX_FINDINGS_IN_PROMPT]
    ]
    if len(findings) > MAX_FINDINGS_IN_PROMPT:
        lines.append(f"... ({len(findings) - MAX_FINDINGS_IN_PROMPT} more)")
    return "\n".join(lines)


def _format_commits(commits: list[dict]) -> str:
    if not commits:
        return "(no commits)"
    # Keep the newest commits when the history is long
    shown = commits[-MAX_COMMITS_IN_PROMPT:]
    lines = []
    if len(commits) > len(shown):
        lines.append(f"... ({len(commits) - len(shown)} older commits omitted)")
    lines.extend(
        f"- {c['id'][:10]} {c['date']} {_line(c['author'])}: {_line(c['summary'])}" for c in shown
    )
    return "\n".join(lines)


def _format_decisions(decisions: list[dict]) -> str:
    if not decisions:
        return "(no decisions)"
    lines = []
    for d in decisions[-MAX_COMMITS_IN_PROMPT:]:
        lines.append(f"- [{d['category']}] {_line(d['description'])} (commit {d['commit'][:10]})")
        if d.get("rationale"):
            lines.append(f"  Rationale: {_bound(d['rationale'], MAX_RATIONALE_CHARS)}")
        else:
            lines.append("  Rationale: (not recorded)")
    return "\n".join(lines)


def _format_concepts(concepts: list[dict]) -> str:
    if not concepts:
        return "(none)"
    lines = [
        f"- {_line(c['id'])}: {_line(c['name'])} (confidence {c['score']:.2f})"
        for c in concepts[:MAX_CONCEPTS_IN_PROMPT]
    ]
    if len(concepts) > MAX_CONCEPTS_IN_PROMPT:
        lines.append(f"... ({len(concepts) - MAX_CONCEPTS_IN_PROMPT} more)")
    return "\n".join(lines)


def _bound(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... ({len(text) - limit} more characters)"


def _line(text: str) -> str:
    text = " ".join(str(text).split())
    if len(text) <= MAX_LINE_CHARS:
        return text
    return text[: MAX_LINE_CHARS - 3] + "..."


def _cap(prompt: str) -> str:
    """Trim the context so the prompt fits MAX_PROMPT_CHARS, keeping the instructions."""
    if len(prompt) <= MAX_PROMPT_CHARS:
        return prompt
    head, marker, instructions = prompt.partition("\n## Instructions")
    tail = marker + instructions
    note = "\n... (context truncated)\n"
    return head[: max(MAX_PROMPT_CHARS - len(tail) - len(note), 0)] + note + tail
