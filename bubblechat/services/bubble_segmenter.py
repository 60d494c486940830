"""
services/bubble_segmenter.py
----------------------------
Turns one model completion into an ordered list of short chat bubbles.

The persona style prompt asks the model to separate bubbles with '&&&'.
Segmentation tries, in order:
  1. the explicit '&&&' delimiter (after cleaning up sloppy delimiters)
  2. blank-line paragraphs, when there are 2-4 of them
  3. for long replies, two halves of the sentence list
  4. the whole reply as one bubble

Pure functions only; no I/O.
"""

import math
import re

DELIMITER = "&&&"
LONG_REPLY_THRESHOLD = 150
MAX_PARAGRAPH_BUBBLES = 4

_DELIMITER_RUN = re.compile(r"&{4,}")
_DELIMITER_WITH_SPACE = re.compile(r"\s*&&&\s*")
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n+")
_SENTENCE = re.compile(r"[^.!?]+(?:[.!?]+|$)")


def normalize(text: str) -> str:
    """
    Collapse runs of four or more '&' into the canonical delimiter and drop
    any '&' that is not part of one.
    """
    collapsed = _DELIMITER_RUN.sub(DELIMITER, text.strip())
    pieces = _DELIMITER_WITH_SPACE.split(collapsed)
    return DELIMITER.join(piece.replace("&", "") for piece in pieces).strip()


def _clean(fragments) -> list[str]:
    return [f.strip() for f in fragments if f and f.strip()]


def split_sentences(text: str) -> list[str]:
    return _clean(_SENTENCE.findall(text))


def segment(raw_text: str) -> list[str]:
    """
    Split a reply into display bubbles.

    Every returned bubble is stripped and non-blank. The result is non-empty
    exactly when normalize(raw_text) is non-empty: input made only of
    whitespace and '&' characters yields [], which callers treat as an
    empty reply.
    """
    text = normalize(raw_text or "")
    if not text:
        return []

    if DELIMITER in text:
        return _clean(text.split(DELIMITER))

    paragraphs = _clean(_PARAGRAPH_BREAK.split(text))
    if 1 < len(paragraphs) <= MAX_PARAGRAPH_BUBBLES:
        return paragraphs

    if len(text) > LONG_REPLY_THRESHOLD:
        sentences = split_sentences(text)
        if len(sentences) >= 2:
            mid = math.ceil(len(sentences) / 2)
            return _clean([" ".join(sentences[:mid]), " ".join(sentences[mid:])])

    return [text]
