"""Canonical instrument names, transpositions and sections."""

import re
from dataclasses import dataclass

_CHAIR_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(1st|first|i\b|1)\b", re.I), "1st"),
    (re.compile(r"\b(2nd|second|ii\b|2)\b", re.I), "2nd"),
    (re.compile(r"\b(3rd|third|iii\b|3)\b", re.I), "3rd"),
    (re.compile(r"\b(4th|fourth|iv\b|4)\b", re.I), "4th"),
    (re.compile(r"\b(aux|auxiliary)\b", re.I), "Aux"),
    (re.compile(r"\b(solo)\b", re.I), "Solo"),
]

# "Clarinet in Bb II" and friends are rewritten to "2nd Bb Clarinet" before inference.
_CLARINET_CHAIR_PHRASES = [
    re.compile(r"\bclarinet\s+in\s+bb\s*(iv|i{1,3}|1|2|3|4)\b", re.I),
    re.compile(r"\bbb\s+clarinet\s*(iv|i{1,3}|1|2|3|4)\b", re.I),
    re.compile(r"\bclarinet\s*(iv|i{1,3}|1|2|3|4)\s+in\s+bb\b", re.I),
]

_ROMAN_CHAIRS = {"i": "1st", "1": "1st", "ii": "2nd", "2": "2nd", "iii": "3rd", "3": "3rd", "iv": "4th", "4": "4th"}

# Order matters: more specific instruments come before their generic family.
_INSTRUMENTS: list[tuple[re.Pattern[str], str, str, str]] = [
    (re.compile(r"piccolo", re.I), "Piccolo", "C", "Woodwinds"),
    (re.compile(r"\beb[\s.-]?clarinet\b", re.I), "Eb Clarinet", "Eb", "Woodwinds"),
    (re.compile(r"\bbass[\s.-]?clarinet\b", re.I), "Bass Clarinet", "Bb", "Woodwinds"),
    (re.compile(r"\bclarinet\b", re.I), "Bb Clarinet", "Bb", "Woodwinds"),
    (re.compile(r"\bflute\b", re.I), "Flute", "C", "Woodwinds"),
    (re.compile(r"\boboe\b", re.I), "Oboe", "C", "Woodwinds"),
    (re.compile(r"\benglish[\s.-]?horn\b", re.I), "English Horn", "F", "Woodwinds"),
    (re.compile(r"\bcontra[\s.-]?bassoon\b", re.I), "Contrabassoon", "C", "Woodwinds"),
    (re.compile(r"\bbassoon\b", re.I), "Bassoon", "C", "Woodwinds"),
    (re.compile(r"\bsoprano[\s.-]?sax", re.I), "Soprano Saxophone", "Bb", "Woodwinds"),
    (re.compile(r"\balto[\s.-]?sax", re.I), "Alto Saxophone", "Eb", "Woodwinds"),
    (re.compile(r"\btenor[\s.-]?sax", re.I), "Tenor Saxophone", "Bb", "Woodwinds"),
    (re.compile(r"\bbari(tone)?[\s.-]?sax", re.I), "Baritone Saxophone", "Eb", "Woodwinds"),
    (re.compile(r"\bsax(ophone)?\b", re.I), "Saxophone", "C", "Woodwinds"),
    (re.compile(r"\bflugelhorn\b", re.I), "Flugelhorn", "Bb", "Brass"),
    (re.compile(r"\btrumpet\b", re.I), "Trumpet", "Bb", "Brass"),
    (re.compile(r"\bcornet\b", re.I), "Cornet", "Bb", "Brass"),
    (re.compile(r"\bbass[\s.-]?trombone\b", re.I), "Bass Trombone", "C", "Brass"),
    (re.compile(r"\btrombone\b", re.I), "Trombone", "C", "Brass"),
    (re.compile(r"\beuphonium\b", re.I), "Euphonium", "C", "Brass"),
    (re.compile(r"\bhorn\b", re.I), "Horn", "F", "Brass"),
    (re.compile(r"\btuba\b", re.I), "Tuba", "C", "Brass"),
    (re.compile(r"\bbaritone\b", re.I), "Baritone", "C", "Brass"),
    (re.compile(r"\btimpani\b", re.I), "Timpani", "C", "Percussion"),
    (re.compile(r"\bsnare[\s.-]?drum\b", re.I), "Snare Drum", "C", "Percussion"),
    (re.compile(r"\bbass[\s.-]?drum\b", re.I), "Bass Drum", "C", "Percussion"),
    (re.compile(r"\bmarimba\b", re.I), "Marimba", "C", "Percussion"),
    (re.compile(r"\bxylophone\b", re.I), "Xylophone", "C", "Percussion"),
    (re.compile(r"\bvibraphone\b", re.I), "Vibraphone", "C", "Percussion"),
    (re.compile(r"\bmallet\b", re.I), "Mallet Percussion", "C", "Percussion"),
    (re.compile(r"\bpercussion\b", re.I), "Percussion", "C", "Percussion"),
    (re.compile(r"\bviolin\b", re.I), "Violin", "C", "Strings"),
    (re.compile(r"\bviola\b", re.I), "Viola", "C", "Strings"),
    (re.compile(r"\bcello\b", re.I), "Cello", "C", "Strings"),
    (re.compile(r"\bstring[\s.-]?bass\b", re.I), "String Bass", "C", "Strings"),
    (re.compile(r"\bharp\b", re.I), "Harp", "C", "Strings"),
    (re.compile(r"\bpiano\b", re.I), "Piano", "C", "Keyboard"),
    (re.compile(r"\borgan\b", re.I), "Organ", "C", "Keyboard"),
    (re.compile(r"\bconductor\b", re.I), "Conductor Score", "C", "Score"),
    (re.compile(r"\bfull[\s.-]?score\b", re.I), "Full Score", "C", "Score"),
    (re.compile(r"\bcondensed[\s.-]?score\b", re.I), "Condensed Score", "C", "Score"),
]


@dataclass(frozen=True)
class NormalizedInstrument:
    instrument: str
    transposition: str
    section: str


def normalize_instrument_label(raw: str) -> NormalizedInstrument:
    """Derive canonical instrument, transposition and section from a label.

    A chair found in the label is folded into the instrument, e.g. "2nd Bb Clarinet".

    Unrecognized labels come back cleaned, in section "Other" and concert pitch.
    An empty label becomes "Unknown".
    """
    text = _normalize_chair_phrases(raw)
    chair = _infer_chair(text)
    for pattern, base, transposition, section in _INSTRUMENTS:
        if pattern.search(text):
            instrument = f"{chair} {base}" if chair else base
            return NormalizedInstrument(instrument, transposition, section)
    return NormalizedInstrument(text or "Unknown", "C", "Other")


def build_part_display_name(piece_title: str, instrument: str) -> str:
    """E.g. ("American Patrol", "1st Bb Clarinet") -> "American Patrol 1st Bb Clarinet"."""
    title = re.sub(r"\s+", " ", piece_title.strip())
    return f"{title} {instrument.strip()}".strip()


def _normalize_chair_phrases(raw: str) -> str:
    text = re.sub(r"\s+", " ", raw.strip())
    for pattern in _CLARINET_CHAIR_PHRASES:
        text = pattern.sub(
            lambda m: f"{_ROMAN_CHAIRS.get(m.group(1).lower(), m.group(1))} Bb Clarinet",
            text,
        )
    return text


def _infer_chair(text: str) -> str | None:
    for pattern, chair in _CHAIR_PATTERNS:
        if pattern.search(text):
            return chair
    return None

