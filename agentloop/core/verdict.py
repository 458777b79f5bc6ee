"""Classify free-text code review output.

Classification is data: an ordered table of VerdictRules evaluated top to
bottom, first match wins, with a conservative ``blocking`` default. A
separate noise table strips tool banners before classification.
"""

import re
from dataclasses import dataclass
from enum import Enum


class Verdict(str, Enum):
    APPROVED = "approved"
    BLOCKING = "blocking"
    NON_BLOCKING = "non_blocking"


@dataclass(frozen=True)
class VerdictRule:
    verdict: Verdict
    pattern: re.Pattern[str]
    name: str


def _rule(verdict: Verdict, name: str, pattern: str) -> VerdictRule:
    return VerdictRule(
        verdict=verdict,
        pattern=re.compile(pattern, re.IGNORECASE | re.MULTILINE),
        name=name,
    )


# Evaluated in order. Rejection phrases precede approval since "NOT APPROVED"
# contains "APPROVED".
VERDICT_RULES: list[VerdictRule] = [
    _rule(Verdict.BLOCKING, "rejected", r"\bnot\s+approved\b"),
    _rule(Verdict.BLOCKING, "changes requested", r"\b(changes\s+requested|request(ing)?\s+changes)\b"),
    _rule(Verdict.APPROVED, "approved", r"^\W*approved\W*$"),
    _rule(Verdict.APPROVED, "lgtm", r"\blgtm\b"),
    _rule(Verdict.APPROVED, "no issues", r"\bno\s+(blocking\s+)?(issues|problems)\b"),
    _rule(Verdict.BLOCKING, "blocking", r"(?<!non-)(?<!non )\bblocking\b"),
    _rule(Verdict.BLOCKING, "must fix", r"\bmust\s+(be\s+)?(fix|fixed|change|changed|address|addressed)\b"),
    _rule(Verdict.BLOCKING, "defect", r"\b(bugs?|critical|vulnerabilit(y|ies)|broken|incorrect|crash(es)?)\b"),
    _rule(Verdict.BLOCKING, "failure", r"\b(fails?|failing|failed|errors?)\b"),
    _rule(Verdict.NON_BLOCKING, "suggestion", r"\bsuggest(ion|ions|ed)?\b"),
    _rule(Verdict.NON_BLOCKING, "nit", r"\bnit(pick)?s?\b"),
    _rule(Verdict.NON_BLOCKING, "optional", r"\b(optional|consider|minor|non-?blocking)\b"),
]

DEFAULT_VERDICT = Verdict.BLOCKING

# Lines emitted by review tools themselves rather than the reviewer
NOISE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"^OpenAI Codex v[\d.]+",
        r"^-{4,}$",
        r"^(workdir|model|provider|approval|sandbox|reasoning effort|reasoning summaries|session id):",
        r"^mcp:",
        r"^mcp startup:",
        r"^(user|codex|thinking|exec)$",
        r"^tokens used:?",
        r"^\[\d{4}-\d{2}-\d{2}T[\d:.]+Z?\]",  # Timestamped tool log lines
    ]
]


def clean_review(text: str) -> str:
    """Drop tool noise lines and surrounding blank lines."""
    kept = [
        line
        for line in text.splitlines()
        if not any(pattern.search(line.strip()) for pattern in NOISE_PATTERNS)
    ]
    return "\n".join(kept).strip()


def classify_review(text: str, rules: list[VerdictRule] | None = None) -> Verdict:
    """First matching rule wins; no match is blocking."""
    for rule in rules or VERDICT_RULES:
        if rule.pattern.search(text):
            return rule.verdict
    return DEFAULT_VERDICT
