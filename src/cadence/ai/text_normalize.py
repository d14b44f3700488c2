import re

from .config import MAX_INTENT_CHARS


def clean_intent_text(text: str) -> str:
    if not text:
        return ""
    cleaned = re.sub(r"[ \t]+", " ", text)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
    return cleaned[:MAX_INTENT_CHARS]


def normalize_slang(text: str) -> str:
    """
    Lightweight normalization to help smaller models.
    "9ish"/"9-ish"/"9:30ish"/"9amish" -> "around 9..."; "noonish" -> "around noon".
    """
    if not text:
        return ""

    t = text

    t = re.sub(r"\b(\d{1,2}\s*(?:am|pm))\s*-?\s*ish\b", r"around \1", t, flags=re.IGNORECASE)
    t = re.sub(r"\b(\d{1,2}:\d{2})\s*-?\s*ish\b", r"around \1", t, flags=re.IGNORECASE)
    t = re.sub(r"\b(\d{1,2})\s*-?\s*ish\b", r"around \1", t, flags=re.IGNORECASE)
    t = re.sub(r"\b(noon|midnight)\s*-?\s*ish\b", r"around \1", t, flags=re.IGNORECASE)

    return t
