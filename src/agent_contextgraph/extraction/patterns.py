"""
Phrase and keyword tables used by the classifiers and scorer.

Kept as plain data so they can be extended or localized without touching
the matching code. Patterns are compiled case-insensitively by
`compile_table`.
"""

import re
from typing import List, Tuple, Pattern

# Trigger phrases per signal family. The phrase tables below and the
# discussion exclusions are both built from these lists.
DECISION_TRIGGERS = [
    "I've decided", "we've decided", "decided to", "chose to", "selected",
    "will use", "going with", "the approach is",
]
PLAN_TRIGGERS = ["the plan is", "we'll", "let's", "I'll", "we should", "I recommend"]
RECOMMENDATION_LABELS = ["best practice", "recommendation", "solution"]

MODAL_TRIGGERS = ["must", "should", "shall", "need to", "needs to", "required to", "have to"]
REQUIREMENT_LABELS = ["requirement", "constraint", "specification"]
VERIFICATION_TRIGGERS = ["ensure", "make sure", "verify", "validate"]

ERROR_LABELS = ["error", "exception", "failed", "failure"]
TRACE_LABELS = ["stack trace", "traceback"]
ISSUE_LABELS = ["bug", "issue", "problem"]


def alternation(phrases: List[str]) -> str:
    """Regex alternation of literal phrases, longest first."""
    return "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))


# (label, regex) pairs. The first capture group, when present, is recorded
# as metadata (the modal verb or error label).
DECISION_PATTERNS = [
    ("decision", rf"\b(?:{alternation(DECISION_TRIGGERS)})\s+[^.!?]+[.!?]"),
    ("plan", rf"\b(?:{alternation(PLAN_TRIGGERS)})\s+[^.!?]+[.!?]"),
    ("recommendation", rf"\b(?:{alternation(RECOMMENDATION_LABELS)}):\s*[^.!?\n]+[.!?]?"),
]

REQUIREMENT_PATTERNS = [
    ("modal", rf"\b({alternation(MODAL_TRIGGERS)})\s+[^.!?]+[.!?]"),
    ("label", rf"\b({alternation(REQUIREMENT_LABELS)}):\s*[^.!?\n]+[.!?]?"),
    ("verification", rf"\b({alternation(VERIFICATION_TRIGGERS)})\s+(?:that\s+)?[^.!?]+[.!?]"),
]

ERROR_PATTERNS = [
    ("labelled", rf"\b({alternation(ERROR_LABELS)}):\s*[^.!?\n]+[.!?]?"),
    ("stack_trace", rf"\b({alternation(TRACE_LABELS)}):\s*[\s\S]+?(?=\n\n|\n[A-Z]|$)"),
    ("python_traceback", r"(Traceback) \(most recent call last\):\n(?:[ \t]+.*\n)+\w[\w.]*(?:Error|Exception|Warning)?:?.*"),
    ("js_stack", r"\b(\w*Error): [^\n]+(?:\n[ \t]+at [^\n]+)+"),
    ("issue", rf"\b({alternation(ISSUE_LABELS)}):\s*[^.!?\n]+[.!?]?"),
]

# Signal families a paragraph must avoid to count as plain discussion:
# fences, any decision/requirement/error trigger, and any labelled span.
DISCUSSION_EXCLUSIONS = [
    r"```|~~~",
    r"\b(?:decided|chose)\b",
    rf"\b(?:{alternation(DECISION_TRIGGERS + PLAN_TRIGGERS + MODAL_TRIGGERS + VERIFICATION_TRIGGERS + ERROR_LABELS)})\b",
    rf"\b(?:{alternation(RECOMMENDATION_LABELS + REQUIREMENT_LABELS + TRACE_LABELS + ISSUE_LABELS)}):",
    r"\bTraceback \(most recent call last\)|\b\w*Error: ",
]

# Span length bounds, inclusive.
DECISION_BOUNDS = (20, 500)
REQUIREMENT_BOUNDS = (20, 500)
ERROR_BOUNDS = (30, 1000)
DISCUSSION_BOUNDS = (100, 1000)
DISCUSSION_MIN_WORDS = 21

# Base score by type, highest operational risk first.
BASE_SCORES = {
    "error": 0.9,
    "requirement": 0.85,
    "decision": 0.8,
    "code": 0.7,
    "discussion": 0.5,
}

TYPE_BONUSES = {
    "error": 0.1,
    "requirement": 0.05,
}

# (token threshold, bonus); each threshold exceeded adds its bonus.
SIZE_BONUSES = [
    (100, 0.05),
    (500, 0.05),
]

RISK_KEYWORDS = {
    "critical": 0.1,
    "important": 0.08,
    "security": 0.1,
    "performance": 0.07,
    "architecture": 0.08,
    "breaking change": 0.1,
    "TODO": 0.06,
    "FIXME": 0.08,
}

# Relationship heuristics.
FUNCTION_NAME_PATTERNS = [
    r"\bfunction\s+(\w+)",
    r"\bconst\s+(\w+)\s*=\s*(?:async\s*)?\(",
    r"(\w+)\s*:\s*(?:async\s*)?\(",
    r"\bdef\s+(\w+)",
    r"\bfunc\s+(\w+)",
]

CLASS_NAME_PATTERNS = [
    r"\bclass\s+(\w+)",
    r"\binterface\s+(\w+)",
    r"\btype\s+(\w+)",
    r"\bstruct\s+(\w+)",
]

IMPORT_PATTERNS = {
    "javascript": [
        r"\bimport\s+\{([^}]*)\}\s+from",
        r"\bimport\s+(\w+)\s+from",
        r"\bimport\s+.*?\s+from\s+['\"](.+?)['\"]",
        r"\brequire\s*\(\s*['\"](.+?)['\"]\s*\)",
    ],
    "python": [
        r"^[ \t]*from\s+[\w.]+\s+import\s+\(?([\w \t,]+)",
        r"^[ \t]*import\s+([\w.]+)",
    ],
}

EXPORT_PATTERNS = {
    "javascript": [
        r"\bexport\s+(?:default\s+)?(?:async\s+)?(?:function|class|const|let|var)\s+(\w+)",
        r"\bmodule\.exports\s*=\s*(\w+)",
    ],
    "python": [
        r"^(?:async\s+)?def\s+(\w+)",
        r"^class\s+(\w+)",
    ],
}

LANGUAGE_ALIASES = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "javascript",
    "tsx": "javascript",
    "typescript": "javascript",
    "py": "python",
    "python3": "python",
}

CODE_MENTION_PATTERNS = [
    r"`(\w+)`",
    r"\b(\w+)\(\)",
    r"\b(\w+)\s+(?:function|method|class)\b",
]

COMMON_KEYWORDS = {
    "const", "let", "var", "function", "class", "if", "else", "for",
    "while", "return", "import", "export", "async", "await", "try",
    "catch", "throw", "new", "this", "super", "extends", "implements",
    "def", "self", "none", "true", "false", "from", "pass", "with",
}


def compile_table(table: List[Tuple[str, str]], flags: int = re.IGNORECASE) -> List[Tuple[str, Pattern]]:
    """Compile a (label, regex) table."""
    return [(label, re.compile(source, flags)) for label, source in table]


def compile_list(sources: List[str], flags: int = 0) -> List[Pattern]:
    return [re.compile(source, flags) for source in sources]
