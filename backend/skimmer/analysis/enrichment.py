"""
Rule-Based Enrichment — Deterministic Text Analysis

The mandatory analysis pass. It runs for every file, with or without a
remote model, and is the result of record whenever the remote model is
skipped or fails.

Extracted features:
  - entities   titled people, organisations, locations, e-mails, phones
  - dates      numeric and "Mon DD, YYYY" forms
  - amounts    currency-prefixed and currency-suffixed figures
  - topics     keyword groups (business / technology / operations)
  - keywords   top-10 non-stopword terms by frequency
  - sentiment  positive / negative / neutral by lexicon counts
  - language   en / es / fr by function-word counts
  - readability Flesch reading ease, clamped to 0–100
  - content type and structural metadata

Every list is built in first-occurrence order, so identical input always
yields identical output.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_PEOPLE_RE = re.compile(r"\b(?:Mr|Mrs|Ms|Dr|Prof)\.\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?")
_ORG_RE = re.compile(
    r"\b[A-Z][\w&-]*(?:\s+[A-Z][\w&-]*)*\s+"
    r"(?:Inc\.?|Corp\.?|LLC|Ltd\.?|Company|Corporation|Group)(?!\w)"
)
_LOCATION_RE = re.compile(
    r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+(?:City|State|Country|Street|Avenue|Road|Boulevard)\b"
)
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE_RE = re.compile(r"(?:\+\d{1,3}\s?)?(?:\(\d{3}\)|\b\d{3})[-.\s]?\d{3}[-.\s]?\d{4}\b")

_DATE_RE = re.compile(
    r"\b(?:\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2}|"
    r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4})\b",
    re.IGNORECASE,
)
_AMOUNT_RE = re.compile(
    r"\$\d[\d,]*(?:\.\d{2})?|\b\d+(?:,\d{3})*(?:\.\d{2})?\s*(?:dollars?|USD|EUR|GBP)\b",
    re.IGNORECASE,
)
_WORD_RE = re.compile(r"[a-zà-ÿ0-9']+", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Lexicons
# ---------------------------------------------------------------------------

TOPIC_GROUPS: dict[str, tuple[str, ...]] = {
    "business": (
        "revenue", "profit", "investment", "market", "strategy",
        "financial", "budget", "analysis", "growth", "performance",
    ),
    "technology": (
        "technology", "software", "digital", "innovation", "platform",
        "automation", "data", "analytics", "cloud", "ai",
    ),
    "operations": (
        "process", "operation", "management", "workflow",
        "efficiency", "optimization", "quality", "compliance",
    ),
}

_STOPWORDS = frozenset({
    "the", "and", "but", "for", "with", "this", "that", "these", "those", "will",
    "would", "could", "should", "might", "cannot", "have", "been", "being", "were",
    "from", "they", "their", "there", "what", "when", "which", "while", "also",
    "into", "than", "then", "them", "your", "about", "such", "only", "more",
})

_POSITIVE = ("good", "great", "excellent", "positive", "success", "growth",
             "improve", "increase", "profit", "benefit")
_NEGATIVE = ("bad", "poor", "negative", "loss", "decrease", "decline",
             "problem", "issue", "concern", "risk")

_LANGUAGE_MARKERS: dict[str, frozenset[str]] = {
    "en": frozenset({"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}),
    "es": frozenset({"el", "la", "y", "o", "pero", "en", "de", "con", "por", "para", "que", "los"}),
    "fr": frozenset({"le", "la", "et", "ou", "mais", "en", "de", "avec", "par", "pour", "les", "des"}),
}

MAX_TOPICS = 8


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class ContentEnrichment:
    people:            list[str] = field(default_factory=list)
    organizations:     list[str] = field(default_factory=list)
    locations:         list[str] = field(default_factory=list)
    emails:            list[str] = field(default_factory=list)
    phones:            list[str] = field(default_factory=list)
    dates:             list[str] = field(default_factory=list)
    amounts:           list[str] = field(default_factory=list)
    primary_topics:    list[str] = field(default_factory=list)
    secondary_topics:  list[str] = field(default_factory=list)
    categories:        list[str] = field(default_factory=list)
    keywords:          list[str] = field(default_factory=list)
    sentiment:         str = "neutral"
    language:          str = "unknown"
    readability_score: float = 0.0
    content_type:      str = "general"
    metadata:          dict[str, Any] = field(default_factory=dict)

    @property
    def entities(self) -> list[str]:
        return _unique(self.people + self.organizations + self.locations)

    @property
    def topics(self) -> list[str]:
        return self.primary_topics + self.secondary_topics


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def perform_full_enrichment(text: str, mime_type: str) -> ContentEnrichment:
    topics = extract_topics(text)
    return ContentEnrichment(
        people=_findall(_PEOPLE_RE, text),
        organizations=_findall(_ORG_RE, text),
        locations=_findall(_LOCATION_RE, text),
        emails=_findall(_EMAIL_RE, text),
        phones=_findall(_PHONE_RE, text),
        dates=_findall(_DATE_RE, text),
        amounts=_findall(_AMOUNT_RE, text),
        primary_topics=topics[:3],
        secondary_topics=topics[3:MAX_TOPICS],
        categories=categorize_content(text, mime_type),
        keywords=extract_keywords(text),
        sentiment=analyze_sentiment(text),
        language=detect_language(text),
        readability_score=calculate_readability(text),
        content_type=determine_content_type(text, mime_type),
        metadata=extract_metadata(text, mime_type),
    )


def extract_topics(text: str) -> list[str]:
    """Group name followed by the matching keywords, per group, in group order."""
    words = set(_words(text))
    topics: list[str] = []
    for group, keywords in TOPIC_GROUPS.items():
        matches = [k for k in keywords if k in words]
        if matches:
            topics.append(group)
            topics.extend(matches)
    return _unique(topics)


def extract_keywords(text: str, limit: int = 10) -> list[str]:
    counts = Counter(
        w for w in _words(text)
        if len(w) > 3 and w not in _STOPWORDS and not w.isdigit()
    )
    # Counter.most_common keeps first-seen order among equal counts.
    return [word for word, _ in counts.most_common(limit)]


def categorize_content(text: str, mime_type: str) -> list[str]:
    lower = text.lower()
    categories = []
    if "pdf" in mime_type or "report" in lower or "analysis" in lower:
        categories.append("document")
    if any(k in lower for k in ("financial", "budget", "revenue")):
        categories.append("financial")
    if any(k in lower for k in ("strategy", "roadmap", " plan")):
        categories.append("strategic")
    return categories


def analyze_sentiment(text: str) -> str:
    words = set(_words(text))
    positive = sum(1 for w in _POSITIVE if w in words)
    negative = sum(1 for w in _NEGATIVE if w in words)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def detect_language(text: str) -> str:
    words = _words(text)
    if not words:
        return "unknown"
    scores = {
        lang: sum(1 for w in words if w in markers)
        for lang, markers in _LANGUAGE_MARKERS.items()
    }
    best = max(scores, key=lambda lang: scores[lang])
    return best if scores[best] > 0 else "unknown"


def calculate_readability(text: str) -> float:
    """Flesch reading ease: 206.835 - 1.015 * words/sentence - 84.6 * syllables/word."""
    words = _words(text)
    if not words:
        return 0.0
    sentences = max(1, len([s for s in re.split(r"[.!?]+", text) if s.strip()]))
    syllables = sum(_syllables(w) for w in words)
    score = 206.835 - 1.015 * (len(words) / sentences) - 84.6 * (syllables / len(words))
    return round(max(0.0, min(100.0, score)), 1)


def determine_content_type(text: str, mime_type: str) -> str:
    if "pdf" in mime_type:
        return "document"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("text/"):
        return "text"
    lower = text.lower()
    if "report" in lower or "analysis" in lower:
        return "report"
    if "contract" in lower or "agreement" in lower:
        return "legal"
    if "invoice" in lower or "receipt" in lower:
        return "financial"
    return "general"


def extract_metadata(text: str, mime_type: str) -> dict[str, Any]:
    return {
        "word_count":          len(text.split()),
        "character_count":     len(text),
        "paragraph_count":     len([p for p in re.split(r"\n\s*\n", text) if p.strip()]),
        "mime_type":           mime_type,
        "has_structured_data": bool(re.search(r"[{\[<]", text)),
        "has_numeric_data":    bool(re.search(r"\d", text)),
        "has_urls":            bool(re.search(r"https?://", text)),
        "has_emails":          bool(_EMAIL_RE.search(text)),
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _findall(pattern: re.Pattern[str], text: str) -> list[str]:
    return _unique(m.group(0).strip() for m in pattern.finditer(text))


def _unique(items: Any) -> list[str]:
    return list(dict.fromkeys(items))


def _words(text: str) -> list[str]:
    return [w.strip("'") for w in _WORD_RE.findall(text.lower()) if w.strip("'")]


def _syllables(word: str) -> int:
    groups = re.findall(r"[aeiouy]+", word)
    count = len(groups)
    if word.endswith("e") and count > 1:
        count -= 1
    return max(1, count)
