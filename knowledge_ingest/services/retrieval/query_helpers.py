"""Heuristics for deciding when a conversational message should hit the knowledge base.

Chat turns are mostly statements; retrieval only pays off when the speaker
asks something.  :func:`is_likely_question` gates retrieval and
:func:`extract_retrieval_query` trims the message down to the part worth
embedding.
"""

from __future__ import annotations

import re

_INTERROGATIVES = frozenset({
    "what", "how", "when", "where", "who", "whom", "whose", "which", "why",
    "is", "are", "am", "was", "were", "do", "does", "did", "can", "could",
    "will", "would", "should", "shall", "may", "might", "have", "has",
})

# Request phrases that introduce a question without a question mark.
_REQUEST_PHRASES = (
    "tell me about",
    "tell me more",
    "can you explain",
    "could you explain",
    "explain to me",
    "i was wondering",
    "wondering if",
    "i'd like to know",
    "i would like to know",
    "could you tell me",
    "can you tell me",
    "i'm curious",
    "know more about",
    "interested in knowing",
    "what's it like",
    "how does",
    "what do you",
)

# Workplace topics a candidate or new hire asks about even without phrasing
# it as a question ("Next steps after the interview").
_TOPIC_PHRASES = (
    "the role",
    "the position",
    "the team",
    "the company",
    "the culture",
    "the process",
    "next steps",
    "the salary",
    "the benefits",
    "the schedule",
    "remote work",
    "work from home",
    "the office",
    "the hours",
)

# Prefixes stripped before embedding; they carry no retrieval signal.
_STRIP_PREFIXES = (
    "i was wondering",
    "i'd like to know",
    "i would like to know",
    "could you tell me",
    "can you tell me",
    "can you explain",
    "tell me about",
    "what about",
    "how about",
)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_FIRST_WORD_RE = re.compile(r"[a-z']+")

_DEFAULT_MAX_CHARS = 500


def is_likely_question(text: str) -> bool:
    """Return ``True`` when *text* reads like something the knowledge base can answer.

    Any of these is enough: a ``?`` anywhere, a leading interrogative word, a
    request phrase anywhere, or a mention of a workplace topic such as
    "the salary" or "next steps".
    """
    lowered = text.strip().lower()
    if not lowered:
        return False
    if "?" in lowered:
        return True

    first = _FIRST_WORD_RE.match(lowered)
    if first and first.group(0) in _INTERROGATIVES:
        return True

    if any(phrase in lowered for phrase in _REQUEST_PHRASES):
        return True
    return any(topic in lowered for topic in _TOPIC_PHRASES)


def extract_retrieval_query(text: str, max_chars: int = _DEFAULT_MAX_CHARS) -> str:
    """Reduce a chat message to the text that should be embedded.

    Keeps the last sentence containing a question mark when the message has
    several sentences, strips a leading request phrase and truncates to
    *max_chars* on a word boundary.  Falls back to the stripped input when
    nothing is left.
    """
    if max_chars < 1:
        raise ValueError(f"max_chars must be >= 1, got {max_chars}")

    stripped = " ".join(text.split())
    if not stripped:
        return ""

    sentences = [s.strip() for s in _SENTENCE_RE.findall(stripped) if s.strip()]
    questions = [s for s in sentences if "?" in s]
    query = questions[-1] if questions else stripped

    lowered = query.lower()
    for prefix in _STRIP_PREFIXES:
        if lowered.startswith(prefix):
            remainder = query[len(prefix):].lstrip(" ,:;-")
            if remainder:
                query = remainder
            break

    if len(query) > max_chars:
        cut = query[:max_chars]
        space = cut.rfind(" ")
        query = cut[:space] if space > max_chars // 2 else cut
    return query.strip() or stripped[:max_chars]
