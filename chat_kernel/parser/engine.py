"""
Command Parser — turns a chat message into a scored ParsedOperation.

Rule based: a verb lexicon and a handful of structural patterns find the
intent, type keywords and the caller's catalog of existing entity names
bind the entity, and regexes lift structured parameters out of the text.

Behavioral Contract:
- Deterministic and side-effect free; identical input yields identical output
- Returns None only when no interpretation clears min_plausibility
- Otherwise returns the best interpretation plus up to max_alternatives runners-up
- A create never binds to an existing entity name
"""

import logging
import re
from typing import Dict, List, NamedTuple, Optional, Protocol, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict

from chat_kernel.models.config import ParserConfig
from chat_kernel.models.operation import (
    IDENTIFIER_FIELDS,
    Alternative,
    EntityType,
    OperationCandidate,
    OperationType,
    ParsedOperation,
    describe_candidate,
)
from chat_kernel.parser.validation import required_fields

logger = logging.getLogger(__name__)

KnownEntities = Dict[EntityType, Sequence[str]]


class CommandParser(Protocol):
    """Anything that can read a chat message into a ParsedOperation."""

    def parse(
        self, text: str, known_entities: Optional[KnownEntities] = None
    ) -> Optional[ParsedOperation]:
        ...


class ConfidenceWeights(BaseModel):
    """Weights of the four signals folded into one confidence scalar."""

    model_config = ConfigDict(frozen=True)

    intent: float = 0.35
    entity: float = 0.35
    completeness: float = 0.15
    lexical: float = 0.15

    def combine(
        self, intent: float, entity: float, completeness: float, lexical: float
    ) -> float:
        score = (
            self.intent * intent
            + self.entity * entity
            + self.completeness * completeness
            + self.lexical * lexical
        )
        return round(min(1.0, max(0.0, score)), 4)


# --- Lexicon ---

_VERB_GROUPS: Dict[OperationType, List[str]] = {
    OperationType.CREATE: [
        "add", "create", "new", "start", "begin", "make", "log", "record",
        "track", "set up", "write",
    ],
    OperationType.UPDATE: ["update", "edit", "change", "modify", "rename", "adjust"],
    OperationType.COMPLETE: [
        "complete", "finish", "finished", "completed", "did", "check off",
        "done with",
    ],
    OperationType.DELETE: ["delete", "remove", "drop", "cancel", "stop"],
    OperationType.QUERY: [
        "show", "show me", "list", "view", "display", "see", "get", "what are",
    ],
    OperationType.DISCOVER: ["discover", "find", "analyze", "analyse", "explore"],
}

VERBS: Dict[str, OperationType] = {
    verb: intent for intent, verbs in _VERB_GROUPS.items() for verb in verbs
}

# Longest phrases first so "show me" wins over "show"
_LEADING = sorted(VERBS, key=lambda phrase: -len(phrase.split()))

TYPE_KEYWORDS: Dict[str, EntityType] = {
    "habit": EntityType.HABIT, "habits": EntityType.HABIT,
    "goal": EntityType.GOAL, "goals": EntityType.GOAL,
    "objective": EntityType.GOAL, "objectives": EntityType.GOAL,
    "journal": EntityType.JOURNAL, "journals": EntityType.JOURNAL,
    "entry": EntityType.JOURNAL, "entries": EntityType.JOURNAL,
    "diary": EntityType.JOURNAL, "note": EntityType.JOURNAL,
    "mood": EntityType.MOOD, "moods": EntityType.MOOD,
    "feeling": EntityType.MOOD, "feelings": EntityType.MOOD,
    "routine": EntityType.ROUTINE, "routines": EntityType.ROUTINE,
    "belief": EntityType.BELIEF, "beliefs": EntityType.BELIEF,
    "affirmation": EntityType.BELIEF, "affirmations": EntityType.BELIEF,
    "mindset": EntityType.BELIEF,
    "synchronicity": EntityType.SYNCHRONICITY,
    "synchronicities": EntityType.SYNCHRONICITY,
    "coincidence": EntityType.SYNCHRONICITY,
    "coincidences": EntityType.SYNCHRONICITY,
}

# Free-text field for each type when no identifier is being looked up
TEXT_FIELDS: Dict[EntityType, str] = {
    EntityType.HABIT: "name",
    EntityType.GOAL: "title",
    EntityType.JOURNAL: "title",
    EntityType.MOOD: "notes",
    EntityType.ROUTINE: "name",
    EntityType.BELIEF: "statement",
    EntityType.SYNCHRONICITY: "description",
}

MOOD_WORDS: Dict[str, int] = {
    "amazing": 9, "great": 8, "happy": 8, "excited": 8, "good": 7,
    "calm": 7, "fine": 6, "okay": 5, "ok": 5, "meh": 4, "tired": 4,
    "anxious": 4, "sad": 3, "bad": 3, "stressed": 3, "awful": 2,
    "terrible": 2,
}

FILLER_PREFIXES: List[Tuple[str, ...]] = [
    ("please",), ("can", "you"), ("could", "you"), ("would", "you"),
    ("i", "want", "to"), ("i'd", "like", "to"), ("i", "would", "like", "to"),
    ("let's",), ("lets",), ("go", "ahead", "and"),
]

# Trimmed from either end of a free-text phrase
EDGE_WORDS = {
    "a", "an", "the", "my", "our", "new", "to", "called", "named", "for",
    "of", "as", "about", "all", "me", "some", "today",
}

KEYWORD_SCORE = 0.85
IMPLIED_SCORE = 0.9
FALLBACK_VERB_SCORE = 0.6

_MARK_DONE = re.compile(
    r"^mark (?P<obj>.+?) (?:as )?(?:done|complete|completed|finished)$"
)
_STRUCTURAL_RULES = [
    (re.compile(r"^(?P<obj>.+?) (?:is |was )?(?:done|completed|finished)$"),
     OperationType.COMPLETE, 0.9, None),
    (re.compile(r"^(?:i feel|i am feeling|i'm feeling|feeling) (?P<obj>.+)$"),
     OperationType.CREATE, 0.9, EntityType.MOOD),
    (re.compile(r"^mood (?P<obj>.+)$"),
     OperationType.CREATE, 0.9, EntityType.MOOD),
    (re.compile(r"^i believe (?:that )?(?P<obj>.+)$"),
     OperationType.CREATE, 0.9, EntityType.BELIEF),
]

_PARAMETER_PATTERNS = [
    ("frequency", re.compile(r"\b(daily|weekly|monthly|every day|every week|every month)\b")),
    ("reminder_time", re.compile(r"\bat (\d{1,2}(?::\d{2})?(?: ?[ap]m)?)(?!\S)")),
    ("priority", re.compile(r"\b(?:(high|medium|low) priority|priority (high|medium|low))\b")),
    ("target_date", re.compile(r"\bby (\d{4}-\d{2}-\d{2})\b")),
    ("energy_level", re.compile(r"\benergy(?: level)?(?: of| is)? (\d{1,2})(?:/10)?(?!\S)")),
    ("mood_rating", re.compile(r"(?<!\S)(\d{1,2}) ?(?:/ ?10|out of 10)(?!\S)")),
]
_TAG = re.compile(r"(?<!\S)#(\w+)")
_FREQUENCIES = {"every day": "daily", "every week": "weekly", "every month": "monthly"}
_QUOTE = re.compile(r'"([^"]+)"|“([^”]+)”')
_PLACEHOLDER = re.compile(r"^__q(\d+)__$")


class _IntentMatch(NamedTuple):
    intent: OperationType
    score: float
    verb_indices: Set[int]
    object_indices: List[int]
    implied_type: Optional[EntityType]


class _Utterance:
    """A normalised message: aligned cased/lower-case tokens plus lifted quotes."""

    def __init__(self, text: str):
        self.quotes: List[str] = []

        def lift(match: "re.Match") -> str:
            quoted = " ".join((match.group(1) or match.group(2)).split())
            self.quotes.append(quoted)
            return f" __q{len(self.quotes) - 1}__ "

        cased = []
        for raw in _QUOTE.sub(lift, text).split():
            token = raw.strip(",;!?").rstrip(".")
            if token.endswith(":") and not any(ch.isdigit() for ch in token):
                token = token.rstrip(":")
            if token:
                cased.append(token)

        lowered = [t.lower() for t in cased]
        stripped = True
        while stripped and lowered:
            stripped = False
            for prefix in FILLER_PREFIXES:
                if tuple(lowered[:len(prefix)]) == prefix:
                    cased, lowered = cased[len(prefix):], lowered[len(prefix):]
                    stripped = True
                    break
        if lowered and lowered[-1] == "please":
            cased, lowered = cased[:-1], lowered[:-1]

        self.cased = cased
        self.tokens = lowered
        self.text = " ".join(lowered)
        self.starts = []
        offset = 0
        for token in lowered:
            self.starts.append(offset)
            offset += len(token) + 1

    def indices(self, start: int, end: int) -> List[int]:
        """Token indices lying fully inside the character span [start, end)."""
        return [
            i for i, s in enumerate(self.starts)
            if s >= start and s + len(self.tokens[i]) <= end
        ]

    def quote_at(self, index: int) -> Optional[str]:
        match = _PLACEHOLDER.match(self.tokens[index])
        if match and int(match.group(1)) < len(self.quotes):
            return self.quotes[int(match.group(1))]
        return None

    def words(self, index: int) -> List[str]:
        quoted = self.quote_at(index)
        return quoted.lower().split() if quoted is not None else [self.tokens[index]]

    def display(self, indices: Sequence[int], keep_quotes: bool = False) -> str:
        parts = []
        for i in indices:
            quoted = self.quote_at(i)
            if quoted is None:
                parts.append(self.cased[i])
            else:
                parts.append(f'"{quoted}"' if keep_quotes else quoted)
        return " ".join(parts)


def name_similarity(name: str, phrase_words: Sequence[str]) -> float:
    """Symmetric token-overlap score between an entity name and a phrase."""
    name_words = set(name.lower().split())
    phrase = set(phrase_words)
    if not name_words or not phrase:
        return 0.0
    common = name_words & phrase
    return (len(common) / len(name_words) + len(common) / len(phrase)) / 2


class RuleBasedParser:
    """
    Default CommandParser.

    Scores every (intent, entity) reading it can build and returns the best
    as a ParsedOperation; runners-up become its alternatives.
    """

    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        weights: Optional[ConfidenceWeights] = None,
    ):
        self.config = config or ParserConfig()
        self.weights = weights or ConfidenceWeights()

    def parse(
        self, text: str, known_entities: Optional[KnownEntities] = None
    ) -> Optional[ParsedOperation]:
        utterance = _Utterance(text or "")
        if not utterance.tokens:
            return None

        scored: List[Tuple[OperationCandidate, float]] = []
        seen = set()
        for match in self._detect_intents(utterance):
            for candidate, confidence in self._interpret(
                utterance, match, known_entities or {}
            ):
                key = (
                    candidate.entity_type,
                    candidate.intent,
                    tuple(sorted((k, repr(v)) for k, v in candidate.parameters.items())),
                )
                if key in seen:
                    continue
                seen.add(key)
                scored.append((candidate, confidence))

        plausible = [
            (c, score) for c, score in scored
            if score >= self.config.min_plausibility
        ]
        if not plausible:
            logger.debug("No plausible reading of %r", text)
            return None

        # sorted() is stable, so ties keep generation order
        plausible = sorted(plausible, key=lambda item: -item[1])
        best, best_score = plausible[0]
        alternatives = [
            Alternative(operation=c, confidence=score, label=describe_candidate(c))
            for c, score in plausible[1:1 + self.config.max_alternatives]
        ]
        logger.debug(
            "Parsed %r as %s (%.3f) with %d alternative(s)",
            text, describe_candidate(best), best_score, len(alternatives),
        )
        return ParsedOperation(
            entity_type=best.entity_type,
            intent=best.intent,
            parameters=dict(best.parameters),
            confidence=best_score,
            alternatives=alternatives,
            original_message=text,
            suggestions=self._missing_field_hints(best),
        )

    # --- Intent detection ---

    def _detect_intents(self, utterance: _Utterance) -> List[_IntentMatch]:
        tokens = utterance.tokens
        everything = list(range(len(tokens)))

        match = _MARK_DONE.match(utterance.text)
        if match:
            return [self._from_pattern(utterance, match, OperationType.COMPLETE, 1.0, None)]

        for phrase in _LEADING:
            words = phrase.split()
            if tokens[:len(words)] == words:
                verb = set(range(len(words)))
                return [_IntentMatch(
                    VERBS[phrase], 1.0, verb, everything[len(words):], None
                )]

        for pattern, intent, score, implied in _STRUCTURAL_RULES:
            match = pattern.match(utterance.text)
            if match:
                return [self._from_pattern(utterance, match, intent, score, implied)]

        # Nothing leading: fall back to verbs found later in the message
        matches = []
        found = set()
        for i, token in enumerate(tokens):
            intent = VERBS.get(token)
            if intent is None or intent in found:
                continue
            found.add(intent)
            matches.append(_IntentMatch(
                intent, FALLBACK_VERB_SCORE, {i},
                [j for j in everything if j != i], None,
            ))
        return matches

    def _from_pattern(self, utterance, match, intent, score, implied) -> _IntentMatch:
        obj = utterance.indices(match.start("obj"), match.end("obj"))
        verb = set(range(len(utterance.tokens))) - set(obj)
        return _IntentMatch(intent, score, verb, obj, implied)

    # --- Entity binding ---

    def _interpret(
        self,
        utterance: _Utterance,
        match: _IntentMatch,
        known_entities: KnownEntities,
    ) -> List[Tuple[OperationCandidate, float]]:
        claimed = set(match.verb_indices)
        keyword_types: List[EntityType] = []
        for i in match.object_indices:
            entity_type = TYPE_KEYWORDS.get(utterance.tokens[i])
            if entity_type is not None:
                claimed.add(i)
                if entity_type not in keyword_types:
                    keyword_types.append(entity_type)

        params = self._extract_parameters(utterance, match.object_indices, claimed)

        bound_types = list(keyword_types)
        if match.implied_type is not None and match.implied_type not in bound_types:
            bound_types.insert(0, match.implied_type)

        results = []
        covered: Set[EntityType] = set()

        if match.intent != OperationType.CREATE and known_entities:
            free = self._free_indices(utterance, match.object_indices, claimed)
            target, new_value = self._split_update(utterance, match.intent, free)
            for entity_type, name, similarity in self._catalog_hits(
                utterance, target, keyword_types, known_entities
            ):
                field = IDENTIFIER_FIELDS[entity_type]
                parameters = dict(params)
                parameters[field] = name
                if new_value:
                    parameters[f"new_{field}"] = utterance.display(new_value)
                if entity_type in keyword_types:
                    entity_score = min(1.0, KEYWORD_SCORE + similarity * 0.15)
                else:
                    entity_score = similarity
                name_words = set(name.lower().split())
                unexplained = sum(
                    1 for i in target
                    if utterance.quote_at(i) is None
                    and utterance.tokens[i] not in name_words
                )
                covered.add(entity_type)
                results.append(self._score(
                    utterance, match, entity_type, parameters, entity_score, unexplained
                ))

        for entity_type in bound_types:
            if entity_type in covered:
                continue
            type_claimed = set(claimed)
            parameters = dict(params)
            if entity_type == EntityType.MOOD:
                self._extract_mood(utterance, match.object_indices, type_claimed, parameters)
            free = self._free_indices(utterance, match.object_indices, type_claimed)
            target, new_value = self._split_update(utterance, match.intent, free)
            unexplained = self._fill_text(
                utterance, match.intent, entity_type, target, new_value, parameters
            )
            entity_score = (
                IMPLIED_SCORE if entity_type == match.implied_type else KEYWORD_SCORE
            )
            results.append(self._score(
                utterance, match, entity_type, parameters, entity_score, unexplained
            ))

        return results

    def _catalog_hits(
        self,
        utterance: _Utterance,
        target: List[int],
        keyword_types: List[EntityType],
        known_entities: KnownEntities,
    ) -> List[Tuple[EntityType, str, float]]:
        phrase_words = [w for i in target for w in utterance.words(i)]
        quoted = [utterance.quote_at(i) for i in target if utterance.quote_at(i)]
        hits = []
        for entity_type in EntityType:
            if IDENTIFIER_FIELDS.get(entity_type) is None:
                continue
            if keyword_types and entity_type not in keyword_types:
                continue
            for name in known_entities.get(entity_type, ()):
                if any(q.lower() == name.lower() for q in quoted):
                    similarity = 1.0
                else:
                    similarity = name_similarity(name, phrase_words)
                if similarity >= self.config.name_match_floor:
                    hits.append((entity_type, name, similarity))
        return hits

    # --- Parameters ---

    def _extract_parameters(
        self, utterance: _Utterance, object_indices: List[int], claimed: Set[int]
    ) -> dict:
        allowed = set(object_indices)
        params: dict = {}

        def take(match: "re.Match") -> bool:
            span = utterance.indices(match.start(), match.end())
            if not span or claimed.intersection(span) or not allowed.issuperset(span):
                return False
            claimed.update(span)
            return True

        for name, pattern in _PARAMETER_PATTERNS:
            for match in pattern.finditer(utterance.text):
                if take(match):
                    value = next(g for g in match.groups() if g)
                    if name == "frequency":
                        value = _FREQUENCIES.get(value, value)
                    elif name in ("mood_rating", "energy_level"):
                        value = int(value)
                    elif name == "reminder_time":
                        value = value.replace(" ", "")
                    params[name] = value
                    break

        tags = [m.group(1) for m in _TAG.finditer(utterance.text) if take(m)]
        if tags:
            params["tags"] = tags
        return params

    def _extract_mood(
        self,
        utterance: _Utterance,
        object_indices: List[int],
        claimed: Set[int],
        params: dict,
    ) -> None:
        for i in object_indices:
            if i in claimed:
                continue
            token = utterance.tokens[i]
            if token in MOOD_WORDS and "mood" not in params:
                params["mood"] = token
                params.setdefault("mood_rating", MOOD_WORDS[token])
                claimed.add(i)
            elif token.isdigit() and "mood_rating" not in params:
                params["mood_rating"] = int(token)
                claimed.add(i)

    def _free_indices(
        self, utterance: _Utterance, object_indices: List[int], claimed: Set[int]
    ) -> List[int]:
        free = [i for i in object_indices if i not in claimed]
        while free and utterance.tokens[free[0]] in EDGE_WORDS:
            free.pop(0)
        while free and utterance.tokens[free[-1]] in EDGE_WORDS:
            free.pop()
        return free

    def _split_update(
        self, utterance: _Utterance, intent: OperationType, free: List[int]
    ) -> Tuple[List[int], List[int]]:
        """For updates, "<target> to <new value>" splits into two phrases."""
        if intent != OperationType.UPDATE:
            return free, []
        for position, i in enumerate(free[1:], start=1):
            if utterance.tokens[i] == "to":
                return free[:position], free[position + 1:]
        return free, []

    def _fill_text(
        self,
        utterance: _Utterance,
        intent: OperationType,
        entity_type: EntityType,
        target: List[int],
        new_value: List[int],
        params: dict,
    ) -> int:
        """Put the free text in the type's text field; return unexplained tokens."""
        if not target:
            return 0
        quoted = [i for i in target if utterance.quote_at(i) is not None]
        value = utterance.quote_at(quoted[0]) if quoted else utterance.display(target)

        if intent in (OperationType.QUERY, OperationType.DISCOVER):
            params["filter"] = value
            return 0
        if intent == OperationType.CREATE:
            field = "content" if entity_type == EntityType.JOURNAL else TEXT_FIELDS[entity_type]
            # A quote inside longer text is part of the text, not a name
            if len(quoted) < len(target):
                value = utterance.display(target, keep_quotes=True)
            params[field] = value
            return 0

        field = TEXT_FIELDS[entity_type]
        params[field] = value
        if new_value:
            params[f"new_{field}"] = utterance.display(new_value)
        # A guessed name that matched nothing known is weak evidence
        return len(target) - len(quoted)

    # --- Scoring ---

    def _score(
        self,
        utterance: _Utterance,
        match: _IntentMatch,
        entity_type: EntityType,
        parameters: dict,
        entity_score: float,
        unexplained: int,
    ) -> Tuple[OperationCandidate, float]:
        candidate = OperationCandidate(
            entity_type=entity_type, intent=match.intent, parameters=parameters
        )
        required = required_fields(entity_type, match.intent)
        if required:
            present = sum(1 for f in required if parameters.get(f) not in (None, ""))
            completeness = present / len(required)
        else:
            completeness = 1.0
        lexical = 1.0 - unexplained / len(utterance.tokens)
        confidence = self.weights.combine(
            match.score, entity_score, completeness, lexical
        )
        return candidate, confidence

    def _missing_field_hints(self, candidate: OperationCandidate) -> List[str]:
        return [
            f"Include the {field.replace('_', ' ')} of the {candidate.entity_type.value}"
            for field in required_fields(candidate.entity_type, candidate.intent)
            if candidate.parameters.get(field) in (None, "")
        ]
