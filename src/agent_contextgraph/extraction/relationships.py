"""
Relationship detection between extracted context items.

Every family is a pure function over an extraction-sized batch of items
(optionally with the source transcript for positional heuristics). Pairs
are compared exhaustively, so batches are expected to stay in the tens to
low hundreds of items.
"""

import re
from typing import List, Optional, Set, Dict, Iterable

from ..types import ContextItem, ContextType, Relationship, RelationshipType
from . import patterns

_FUNCTION_NAMES = patterns.compile_list(patterns.FUNCTION_NAME_PATTERNS)
_CLASS_NAMES = patterns.compile_list(patterns.CLASS_NAME_PATTERNS)
_IMPORTS = {lang: patterns.compile_list(p, re.MULTILINE) for lang, p in patterns.IMPORT_PATTERNS.items()}
_EXPORTS = {lang: patterns.compile_list(p, re.MULTILINE) for lang, p in patterns.EXPORT_PATTERNS.items()}
_CODE_MENTIONS = patterns.compile_list(patterns.CODE_MENTION_PATTERNS)
_IDENTIFIER = re.compile(r"\b[a-zA-Z_]\w*\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def keywords(text: str, min_length: int = 4) -> Set[str]:
    """Lowercase alphanumeric words of at least `min_length` chars."""
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return {w for w in cleaned.split() if len(w) >= min_length}


def jaccard(a: Set[str], b: Set[str]) -> float:
    """Jaccard similarity of two sets; 0.0 when both are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def text_similarity(text1: str, text2: str) -> float:
    """Bag-of-words Jaccard over whitespace-split lowercase tokens."""
    return jaccard(set(text1.lower().split()), set(text2.lower().split()))


def set_overlap(a: Set[str], b: Set[str]) -> float:
    """|A ∩ B| / min(|A|, |B|); 0.0 if either is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def _collect(code: str, regexes: Iterable) -> Set[str]:
    names = set()
    for pattern in regexes:
        for match in pattern.finditer(code):
            if match.group(1):
                names.add(match.group(1))
    return names


def function_names(code: str) -> Set[str]:
    return _collect(code, _FUNCTION_NAMES)


def class_names(code: str) -> Set[str]:
    return {name for name in _collect(code, _CLASS_NAMES) if len(name) > 2}


def _language(item: ContextItem) -> str:
    lang = (item.metadata.get("language") or "").lower()
    return patterns.LANGUAGE_ALIASES.get(lang, lang)


def import_names(code: str, language: str) -> Set[str]:
    """Names and module paths a code block imports."""
    names = set()
    for raw in _collect(code, _IMPORTS.get(language, [])):
        for part in raw.split(","):
            part = part.strip()
            # "a as b" imports a
            part = part.split(" as ")[0].strip()
            if part:
                names.add(part)
                # module paths also match their last segment
                names.add(re.split(r"[./]", part)[-1])
    names.discard("")
    return names


def export_names(code: str, language: str) -> Set[str]:
    return _collect(code, _EXPORTS.get(language, []))


def identifiers(code: str) -> Set[str]:
    """Identifier-like words longer than two chars, minus language keywords."""
    return {
        word for word in _IDENTIFIER.findall(code)
        if len(word) > 2 and word.lower() not in patterns.COMMON_KEYWORDS
    }


def error_keywords(text: str) -> Set[str]:
    """Capitalized words longer than three chars (exception and class names)."""
    return {word for word in _IDENTIFIER.findall(text) if len(word) > 3 and word[0].isupper()}


def code_mentions(text: str) -> Set[str]:
    return _collect(text, _CODE_MENTIONS)


class RelationshipDetector:
    """
    Infers typed edges between context items.

    Families are independent: a pair may receive both an EVOLVES_TO and a
    RELATED_TO edge. Self pairs are never linked.

    Usage:
        detector = RelationshipDetector()
        edges = detector.detect(items, chat_id="chat-1", transcript=text)
    """

    def __init__(
        self,
        evolution_bounds: tuple = (0.6, 0.95),
        function_overlap: float = 0.5,
        related_threshold: float = 0.7,
        reference_distance: int = 500,
        implements_min_shared: int = 3,
    ):
        self.evolution_bounds = evolution_bounds
        self.function_overlap = function_overlap
        self.related_threshold = related_threshold
        self.reference_distance = reference_distance
        self.implements_min_shared = implements_min_shared

    def detect(
        self,
        items: List[ContextItem],
        chat_id: Optional[str] = None,
        transcript: Optional[str] = None,
    ) -> List[Relationship]:
        """Run every family and return deduplicated edges."""
        edges: List[Relationship] = []
        edges.extend(self.detect_evolution(items))
        edges.extend(self.detect_dependencies(items))
        edges.extend(self.detect_references(items, transcript))
        edges.extend(self.detect_implementations(items))
        edges.extend(self.detect_similarity(items))
        if chat_id:
            edges.extend(self.detect_membership(items, chat_id))
        return self._dedupe(edges)

    @staticmethod
    def _dedupe(edges: List[Relationship]) -> List[Relationship]:
        seen = set()
        unique = []
        for edge in edges:
            if edge.key in seen:
                continue
            seen.add(edge.key)
            unique.append(edge)
        return unique

    # -- evolution ---------------------------------------------------------

    def is_evolution(self, current: ContextItem, nxt: ContextItem) -> bool:
        if current.context_type != nxt.context_type:
            return False
        if current.context_type == ContextType.CODE:
            overlap = set_overlap(function_names(current.content), function_names(nxt.content))
            return overlap > self.function_overlap
        low, high = self.evolution_bounds
        similarity = text_similarity(current.content, nxt.content)
        return low < similarity < high

    def detect_evolution(self, items: List[ContextItem]) -> List[Relationship]:
        edges = []
        by_type: Dict[ContextType, List[ContextItem]] = {}
        for item in items:
            by_type.setdefault(item.context_type, []).append(item)

        for group in by_type.values():
            ordered = sorted(group, key=lambda i: i.timestamp)
            for current, nxt in zip(ordered, ordered[1:]):
                if current.id == nxt.id or not self.is_evolution(current, nxt):
                    continue
                delta = nxt.timestamp - current.timestamp
                edges.append(Relationship(
                    from_id=current.id,
                    to_id=nxt.id,
                    type=RelationshipType.EVOLVES_TO,
                    properties={"time_delta": int(round(delta.total_seconds() * 1000))},
                ))
        return edges

    # -- dependency --------------------------------------------------------

    def dependency_type(self, source: ContextItem, target: ContextItem) -> Optional[str]:
        """How `source` depends on `target`, or None."""
        language = _language(source)
        if language != _language(target):
            return None
        if import_names(source.content, language) & export_names(target.content, language):
            return "import"
        source_lower = source.content.lower()
        for name in class_names(target.content):
            if name.lower() in source_lower:
                return "type_reference"
        return None

    def detect_dependencies(self, items: List[ContextItem]) -> List[Relationship]:
        code = [i for i in items if i.context_type == ContextType.CODE]
        edges = []
        for source in code:
            for target in code:
                if source.id == target.id:
                    continue
                kind = self.dependency_type(source, target)
                if kind:
                    edges.append(Relationship(
                        from_id=source.id,
                        to_id=target.id,
                        type=RelationshipType.DEPENDS_ON,
                        properties={"dependency_type": kind},
                    ))
        return edges

    # -- reference ---------------------------------------------------------

    def _position(self, item: ContextItem, transcript: Optional[str]) -> int:
        position = item.metadata.get("position")
        if isinstance(position, int) and position >= 0:
            return position
        if transcript:
            return transcript.find(item.content)
        return -1

    def reference_type(
        self,
        source: ContextItem,
        target: ContextItem,
        transcript: Optional[str] = None,
    ) -> Optional[str]:
        """How `source` refers to `target`, or None."""
        if source.context_type == ContextType.ERROR and target.context_type == ContextType.CODE:
            if error_keywords(source.content) & identifiers(target.content):
                return "error_to_code"

        if source.context_type == ContextType.DISCUSSION:
            if code_mentions(source.content) & identifiers(target.content):
                return "mention"

        pos1 = self._position(source, transcript)
        pos2 = self._position(target, transcript)
        if pos1 >= 0 and pos2 >= 0:
            distance = abs(pos1 - pos2)
            if 0 < distance < self.reference_distance:
                return "proximity"
        return None

    def detect_references(
        self,
        items: List[ContextItem],
        transcript: Optional[str] = None,
    ) -> List[Relationship]:
        edges = []
        for source in items:
            for target in items:
                if source.id == target.id:
                    continue
                kind = self.reference_type(source, target, transcript)
                if kind:
                    edges.append(Relationship(
                        from_id=source.id,
                        to_id=target.id,
                        type=RelationshipType.REFERENCES,
                        properties={"reference_type": kind},
                    ))
        return edges

    # -- implements --------------------------------------------------------

    def detect_implementations(self, items: List[ContextItem]) -> List[Relationship]:
        """Code that shares enough keywords with a requirement implements it."""
        code = [i for i in items if i.context_type == ContextType.CODE]
        requirements = [i for i in items if i.context_type == ContextType.REQUIREMENT]
        edges = []
        for c in code:
            code_words = keywords(c.content)
            for r in requirements:
                shared = code_words & keywords(r.content)
                if len(shared) >= self.implements_min_shared:
                    edges.append(Relationship(
                        from_id=c.id,
                        to_id=r.id,
                        type=RelationshipType.IMPLEMENTS,
                        properties={"shared_keywords": sorted(shared)},
                    ))
        return edges

    # -- similarity --------------------------------------------------------

    def similarity(self, a: ContextItem, b: ContextItem) -> float:
        """Symmetric keyword Jaccard similarity."""
        return jaccard(keywords(a.content), keywords(b.content))

    def detect_similarity(self, items: List[ContextItem]) -> List[Relationship]:
        edges = []
        for i, a in enumerate(items):
            for b in items[i + 1:]:
                if a.id == b.id or a.context_type != b.context_type:
                    continue
                score = self.similarity(a, b)
                if score > self.related_threshold:
                    edges.append(Relationship(
                        from_id=a.id,
                        to_id=b.id,
                        type=RelationshipType.RELATED_TO,
                        properties={"similarity": round(score, 6)},
                    ))
        return edges

    # -- membership --------------------------------------------------------

    def detect_membership(self, items: List[ContextItem], chat_id: str) -> List[Relationship]:
        return [
            Relationship(from_id=item.id, to_id=chat_id, type=RelationshipType.BELONGS_TO)
            for item in items
        ]
