# orderbot/ordering/nlp.py
from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

# ----------------------------
# Ingredient synonyms
# Keep this small; normalization + substring matching do the heavy lifting.
# ----------------------------
_DEFAULT_SYNONYMS: Dict[str, str] = {
    "onions": "onion",
    "tomatoes": "tomato",
    "tomatos": "tomato",
    "pickles": "pickle",
    "cucumbers": "cucumber",
    "lettuces": "lettuce",
    "chillies": "chili",
    "chilli": "chili",
    "tahini sauce": "tahini",
    # Arabic spelling variants (after letter folding)
    "بندوره": "بندوره",
    "طماطم": "بندوره",
}

# ----------------------------
# Regex helpers
# ----------------------------
# Punctuation to spaces (\w is unicode-aware, so Arabic letters survive)
_PUNCT_RE = re.compile(r"[^\w\s]+")

# "no onion", "without onions", "hold the lettuce", "لا بصل", "بدون خس"
_NEGATION_RE = re.compile(
    r"^\s*(?:no|not|without|hold\s+the|minus|free\s+of|لا|بدون|بلا|من\s*غير)\s+",
    re.IGNORECASE,
)

# "with onion", "contains tomato", "مع بصل", "فيه خس"
_INCLUDE_RE = re.compile(
    r"^\s*(?:with|has|have|contains?|including|مع|فيه|فيها)\s+",
    re.IGNORECASE,
)

# "onion-free", "free from onion"
_SUFFIX_FREE_RE = re.compile(r"^(.+?)\s*(?:free)\s*$", re.IGNORECASE)

# Arabic letter folding: alef forms, taa marbuta, alef maqsura, tatweel
_ARABIC_FOLD = str.maketrans({"أ": "ا", "إ": "ا", "آ": "ا", "ة": "ه", "ى": "ي", "ـ": None})


def basic_normalize(s: Optional[str]) -> str:
    """
    Basic cleanup:
    - case-fold
    - fold Arabic letter variants
    - strip punctuation to spaces
    - collapse whitespace
    """
    s = (s or "").strip().casefold().translate(_ARABIC_FOLD)
    s = _PUNCT_RE.sub(" ", s)
    return re.sub(r"\s+", " ", s).strip()


def canonical_ingredient(s: Optional[str], synonyms: Optional[Dict[str, str]] = None) -> str:
    s = basic_normalize(s)
    syn = synonyms if synonyms is not None else _DEFAULT_SYNONYMS
    return basic_normalize(syn.get(s, s))


def parse_ingredient_filter(text: Optional[str]) -> Tuple[str, bool]:
    """
    Split a free-text filter into (ingredient, exclude).
    Example:
      "no onions"   -> ("onion", True)
      "لا بصل"      -> ("بصل", True)
      "with lettuce" -> ("lettuce", False)
      "tomato"      -> ("tomato", False)
    """
    raw = (text or "").strip()
    if not raw:
        return "", False

    m = _NEGATION_RE.match(raw)
    if m:
        return canonical_ingredient(raw[m.end():]), True

    m = _INCLUDE_RE.match(raw)
    if m:
        return canonical_ingredient(raw[m.end():]), False

    m = _SUFFIX_FREE_RE.match(basic_normalize(raw))
    if m:
        return canonical_ingredient(m.group(1)), True

    return canonical_ingredient(raw), False


def mentions(text: Optional[str], ingredient: str) -> bool:
    """True when the normalized ``text`` contains the normalized ingredient."""
    needle = canonical_ingredient(ingredient)
    if not needle:
        return False
    return needle in basic_normalize(text)


# "توصية", "ايش تنصحني", "what do you recommend?"
_RECOMMEND_PHRASES = (
    "توصية",
    "ايش أطيب اشي عندكم",
    "ايش تنصحني",
    "recommend",
    "best seller",
    "what's good",
)


def asks_for_recommendation(text: Optional[str]) -> bool:
    norm = basic_normalize(text)
    if not norm:
        return False
    return any(basic_normalize(p) in norm for p in _RECOMMEND_PHRASES)
