"""Token-bounded text chunking with paragraph-boundary overlap.

Splits extracted document text into :class:`~knowledge_ingest.models.rag.TextChunk`
objects sized for embedding models (300 to 600 estimated tokens by default,
with ~60 tokens of overlap).

The chunking strategy has three goals:

1. **Bounded** -- every chunk fits the embedding model's effective context.
   Token counts are estimated as ``ceil(len(text) / 4)``; the estimate is only
   guaranteed to grow with text length, not to match a real tokenizer.

2. **Paragraph-preserving** -- chunk boundaries align with blank-line
   paragraph breaks wherever possible, so a chunk rarely starts or ends
   mid-thought.

3. **Overlapping windows** -- when a chunk is closed at a paragraph boundary,
   the next chunk starts with the trailing words of the previous one, so a
   passage straddling the split is retrievable from either side.

A paragraph larger than the ceiling is packed sentence by sentence using an
abbreviation-aware splitter that avoids breaking on "Dr.", "vs.", etc.
Sentence-level splits carry no overlap.  Existing chunk sets were produced
that way and re-ingestion must stay byte-for-byte reproducible.
"""

from __future__ import annotations

import math
import re

import structlog

from knowledge_ingest.models.rag import TextChunk

logger = structlog.get_logger(logger_name=__name__)

_CHARS_PER_TOKEN = 4

# Words-per-token ratio used to size the overlap seed.
_OVERLAP_WORD_RATIO = 0.75

# Common abbreviations that should NOT trigger a sentence split.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "Ave",
        "Vol",
        "No",
        "vs",
        "etc",
        "approx",
        "dept",
        "est",
        "inc",
        "ltd",
        "co",
        "e.g",
        "i.e",
    }
)

# One alternation over every abbreviation, longest first; the lookbehind keeps
# "taco." from matching "co.".
_ABBREVIATION_RE = re.compile(
    r"(?<![\w.])(?:"
    + "|".join(re.escape(a) for a in sorted(_ABBREVIATIONS, key=lambda a: (-len(a), a)))
    + r")\."
)

_SENTENCE_END_RE = re.compile(r"[.!?](?:\s|$)")


class TextChunker:
    """Splits text into token-bounded chunks preserving paragraph boundaries.

    The algorithm works in two phases:
    1. Split text into paragraphs (blank-line boundaries)
    2. Accumulate paragraphs into a buffer until the next one would push it
       past ``max_tokens``, then flush the buffer and seed the next one with
       an overlap taken from its tail

    Parameters
    ----------
    min_tokens:
        Smallest estimated size a chunk is flushed at (default 300).  The
        final chunk may be as small as ``min_tokens / 2``.
    max_tokens:
        Hard ceiling on a chunk's estimated size (default 600).
    overlap_tokens:
        Context carried across paragraph-boundary splits (default 60).
    """

    def __init__(
        self,
        min_tokens: int = 300,
        max_tokens: int = 600,
        overlap_tokens: int = 60,
    ) -> None:
        if min_tokens <= 0:
            raise ValueError(f"min_tokens must be positive, got {min_tokens}")
        if max_tokens < min_tokens:
            raise ValueError(f"max_tokens ({max_tokens}) must be >= min_tokens ({min_tokens})")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError(f"overlap_tokens must be in [0, {max_tokens}), got {overlap_tokens}")
        self._min_tokens = min_tokens
        self._max_tokens = max_tokens
        self._overlap_tokens = overlap_tokens

    @property
    def min_tokens(self) -> int:
        return self._min_tokens

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def overlap_tokens(self) -> int:
        return self._overlap_tokens

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into an ordered list of :class:`TextChunk` objects.

        Parameters
        ----------
        text:
            The full extracted text of one document.

        Returns
        -------
        list[TextChunk]
            Chunks in source order; ``index`` is the position in the list.
            Empty or whitespace-only input, and input shorter than
            ``min_tokens / 2``, return an empty list.
        """
        if not text or not text.strip():
            return []

        paragraphs = self._split_paragraphs(text)
        raw_chunks = self._accumulate_chunks(paragraphs)

        chunks = [
            TextChunk(index=i, content=content, token_count=self.estimate_tokens(content))
            for i, content in enumerate(raw_chunks)
        ]

        logger.debug(
            "chunking_complete",
            num_paragraphs=len(paragraphs),
            num_chunks=len(chunks),
            avg_tokens=self._avg_tokens(chunks),
        )
        return chunks

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Approximate token count as ``ceil(len(text) / 4)``."""
        return math.ceil(len(text) / _CHARS_PER_TOKEN)

    # ------------------------------------------------------------------
    # Paragraph / sentence splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        """Split *text* on blank lines, discarding blanks."""
        parts = re.split(r"\n\s*\n", text)
        return [p.strip() for p in parts if p.strip()]

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        """Split *text* at sentence boundaries while respecting abbreviations.

        A boundary is ``.``, ``!`` or ``?`` followed by whitespace or the end
        of the text.  Periods after known abbreviations are masked with
        ``\\x00`` (same length, so indices stay aligned with *text*).
        """
        masked = _ABBREVIATION_RE.sub(lambda m: m.group(0).replace(".", "\x00"), text)

        sentences: list[str] = []
        last = 0
        for match in _SENTENCE_END_RE.finditer(masked):
            end = match.end()
            sentence = text[last:end].strip()
            if sentence:
                sentences.append(sentence)
            last = end

        remainder = text[last:].strip()
        if remainder:
            sentences.append(remainder)

        return sentences if sentences else [text.strip()]

    def _sentence_units(self, text: str) -> list[str]:
        """Return the sentences of *text*, each guaranteed to fit ``max_tokens``."""
        if not text:
            return []
        units: list[str] = []
        for sentence in self._split_sentences(text):
            if self.estimate_tokens(sentence) <= self._max_tokens:
                units.append(sentence)
            else:
                units.extend(self._split_oversize(sentence))
        return units

    def _split_oversize(self, sentence: str) -> list[str]:
        """Break a sentence longer than the ceiling on word boundaries.

        A single word longer than the ceiling (base64 blobs, URLs) is cut on
        character boundaries.
        """
        max_chars = self._max_tokens * _CHARS_PER_TOKEN
        pieces: list[str] = []
        current = ""
        for word in sentence.split():
            while len(word) > max_chars:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:max_chars])
                word = word[max_chars:]
            candidate = f"{current} {word}" if current else word
            if current and len(candidate) > max_chars:
                pieces.append(current)
                current = word
            else:
                current = candidate
        if current:
            pieces.append(current)
        return pieces

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate_chunks(self, paragraphs: list[str]) -> list[str]:
        """Accumulate paragraphs into chunks respecting the token bounds.

        This is the core chunking loop.  ``buffer`` always holds stripped
        text whose estimate is at most ``max_tokens``.
        """
        chunks: list[str] = []
        buffer = ""

        for para in paragraphs:
            # Oversize paragraph: close the buffer and fall back to sentences.
            if self.estimate_tokens(para) > self._max_tokens:
                leading = ""
                if buffer:
                    if self.estimate_tokens(buffer) >= self._min_tokens:
                        chunks.append(buffer)
                    else:
                        # Too small to stand alone; packed ahead of the paragraph.
                        leading = buffer
                buffer = self._pack_into(chunks, leading, para)
                continue

            combined = f"{buffer}\n\n{para}" if buffer else para
            if self.estimate_tokens(combined) <= self._max_tokens:
                buffer = combined
                continue

            if self.estimate_tokens(buffer) >= self._min_tokens:
                chunks.append(buffer)
                buffer = self._seed_with_overlap(buffer, para)
            else:
                # Short buffer plus paragraph overflows: fold them together
                # and re-split at sentence level rather than drop the buffer.
                buffer = self._pack_into(chunks, buffer, para)

        if buffer and self.estimate_tokens(buffer) >= self._min_tokens / 2:
            chunks.append(buffer)

        return chunks

    def _pack_into(self, chunks: list[str], leading: str, paragraph: str) -> str:
        """Sentence-pack *leading* + *paragraph*, append full groups to *chunks*.

        Returns the last, possibly partial, group so later paragraphs can
        keep accumulating onto it.
        """
        units = self._sentence_units(leading) + self._sentence_units(paragraph)
        groups = self._pack_sentences(units)
        chunks.extend(groups[:-1])
        return groups[-1]

    def _pack_sentences(self, units: list[str]) -> list[str]:
        """Greedily join consecutive sentences into groups of at most ``max_tokens``."""
        groups: list[str] = []
        current = ""
        for unit in units:
            candidate = f"{current} {unit}" if current else unit
            if current and self.estimate_tokens(candidate) > self._max_tokens:
                groups.append(current)
                current = unit
            else:
                current = candidate
        if current:
            groups.append(current)
        return groups

    def _seed_with_overlap(self, flushed: str, paragraph: str) -> str:
        """Start a new buffer with the tail words of *flushed* before *paragraph*.

        Takes ``ceil(overlap_tokens * 0.75)`` trailing words, dropping words
        from the front of the overlap while the seeded buffer would exceed
        ``max_tokens``.
        """
        overlap_words = math.ceil(self._overlap_tokens * _OVERLAP_WORD_RATIO)
        if overlap_words <= 0:
            return paragraph

        words = flushed.split()[-overlap_words:]
        while words:
            seeded = " ".join(words) + "\n\n" + paragraph
            if self.estimate_tokens(seeded) <= self._max_tokens:
                return seeded
            words = words[1:]
        return paragraph

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _avg_tokens(chunks: list[TextChunk]) -> int:
        if not chunks:
            return 0
        return sum(c.token_count for c in chunks) // len(chunks)
