"""
Keyword Classifier - cheap intent flags from raw message text

Pure functions only. Matching is case-insensitive substring search over
fixed Turkish / English keyword lists; nothing here raises.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple


ORDER_QUERY_KEYWORDS = [
    "sipariş", "siparişim", "siparişim nerede", "nerede kaldı", "ne zaman gelecek",
    "kurye", "kuryem", "teslimat", "kargo", "order", "where is my order",
    "ne kadar sürer", "geldi mi", "yolda mı", "ne zaman", "tahmini",
    "takip", "tracking", "eta", "varış", "teslim",
]

CANCEL_QUERY_KEYWORDS = [
    "iptal", "iptal et", "siparişi iptal", "siparişimi iptal", "vazgeçtim", "vazgectim",
    "istemiyorum", "cancel", "cancellation", "iptal edebilir miyim", "iptal etmek istiyorum",
]

CANCEL_CONFIRM_KEYWORDS = [
    "evet iptal", "evet, iptal", "iptal et", "iptal istiyorum", "evet", "onaylıyorum", "tamam iptal",
]

# Generic yes-words used to resolve a pending confirmation for any mutating tool
CONFIRMATION_KEYWORDS = CANCEL_CONFIRM_KEYWORDS + [
    "tamam", "olur", "onayla", "onaylıyorum", "kabul", "çağır", "yes", "confirm", "ok",
]

NEGATION_KEYWORDS = ["hayır", "hayir", "istemiyorum", "no", "iptal etme", "iptal etmeyin"]

# Any inflection counts: vazgeç, vazgeçtim, vazgeçiyorum, vazgectim...
NEGATION_PREFIXES = ("vazgeç", "vazgec")

FOOD_QUERY_KEYWORDS = [
    "ne yesem", "ne yiyeyim", "yemek öner", "öneri", "tavsiye", "acıktım", "aç", "canım çekti",
    "bugün ne", "akşam ne", "öğle ne", "kahvaltı", "yemek istiyorum", "sipariş ver",
    "güzel bir şey", "lezzetli", "farklı bir şey", "yeni bir şey", "ne söylesem",
    "food", "hungry", "recommendation", "suggest", "what should i eat",
]

PREFERENCE_KEYWORDS = [
    "tercih", "sevmiyorum", "seviyorum", "alerji", "alerjim", "yemiyorum", "vejeteryan",
    "vegan", "acılı sevmem", "acısız", "glutensiz", "laktozsuz", "helal", "budget", "bütçe",
]

RESTAURANT_SEARCH_KEYWORDS = [
    "hangi restoran", "hangi mekan", "nerede bulabilirim", "nerede yenir", "nerede satılır",
    "en iyi", "en çok satan", "en popüler", "en lezzetli", "en güzel", "en ucuz",
    "tavsiye eder misin", "nereden alsam", "nereden söylesem", "neresi iyi",
    "yorumları", "yorumu", "puanı", "değerlendirme", "rating",
    "kebap", "pizza", "burger", "döner", "lahmacun", "pide", "köfte", "tavuk", "balık",
    "çin yemeği", "japon", "sushi", "meksika", "italyan", "türk mutfağı",
    "kahvaltı", "tatlı", "pasta", "börek", "makarna", "salata", "çorba",
    "adana", "urfa", "iskender", "tantuni", "kokoreç", "dürüm", "wrap",
    "best", "popular", "review", "where can i find", "recommend",
]

STRONG_SEARCH_INDICATORS = [
    "hangi restoran", "nerede yenir", "en çok satan", "en iyi", "nereden",
    "tavsiye", "yorumları", "puanı", "değerlendirme",
]

FOOD_NAMES = [
    "adana kebap", "adana kebabı", "urfa kebap", "urfa kebabı", "iskender", "döner", "dürüm",
    "lahmacun", "pide", "pizza", "burger", "hamburger", "köfte", "tantuni", "kokoreç",
    "makarna", "sushi", "kebap", "kebab", "tavuk", "balık", "çorba", "salata", "börek",
    "tatlı", "pasta", "wrap", "tost", "sandviç", "kahvaltı", "waffle", "krep", "çiğ köfte",
    "mantı", "gözleme", "kumpir", "midye", "kanat", "ciğer", "kuzu", "biftek", "steak",
    "noodle", "ramen", "falafel", "humus", "karnıyarık", "imam bayıldı", "mercimek",
    "pilav", "sarma", "dolma", "künefe", "baklava", "profiterol", "sufle", "tiramisu",
    "acılı", "peynirli", "etli", "tavuklu", "karışık", "vejeteryan", "vegan",
]

# Longest first so "adana kebap" wins over "kebap"
_FOOD_NAMES_BY_LENGTH = sorted(FOOD_NAMES, key=len, reverse=True)

_QUESTION_PATTERNS = [
    re.compile(r"hangi restoran(da|dan)?", re.IGNORECASE),
    re.compile(r"hangi mekan(da|dan)?", re.IGNORECASE),
    re.compile(r"nerede (yenir|bulabilirim|satılır)", re.IGNORECASE),
    re.compile(r"en (iyi|çok satan|popüler|lezzetli|güzel|ucuz)", re.IGNORECASE),
    re.compile(r"tavsiye eder misin", re.IGNORECASE),
    re.compile(r"nereden (alsam|söylesem)", re.IGNORECASE),
    re.compile(r"neresi iyi", re.IGNORECASE),
    re.compile(r"yorumları (en iyi olan|iyi)", re.IGNORECASE),
    re.compile(r"yorumu (nasıl|iyi)", re.IGNORECASE),
    re.compile(r"puanı (yüksek|iyi)", re.IGNORECASE),
    re.compile(r"\?"),
]

NAVIGATION_VERBS = ["git", "aç", "göster", "gitmek"]

# Ordered: first matching keyword wins
NAVIGATION_ROUTES: List[Tuple[str, str]] = [
    ("yemek sipariş", "/food"),
    ("restoran", "/food"),
    ("market", "/grocery"),
    ("mağaza", "/market"),
    ("sepet", "__cart__"),
    ("siparişlerim", "/orders-main"),
    ("favoriler", "/favorites"),
    ("profil", "/profile"),
    ("ayarlar", "/settings"),
    ("ana sayfa", "/"),
]

ADD_TO_CART_KEYWORDS = [
    "sepete ekle", "sepetime ekle", "ekle", "almak istiyorum", "al", "istiyorum",
    "sipariş ver", "sipariş et", "cart", "add to cart", "buy", "tane", "adet",
]

_ADD_TO_CART_NOISE = re.compile(r"sepete ekle|ekle|istiyorum|almak|sipariş|ver|et|tane|adet|\d+", re.IGNORECASE)
_QUANTITY_PATTERN = re.compile(r"(\d+)\s*(tane|adet)")


@dataclass(frozen=True)
class IntentFlags:
    is_order_query: bool = False
    is_cancel_query: bool = False
    is_cancel_confirmation: bool = False
    is_food_query: bool = False
    is_preference_update: bool = False
    is_restaurant_search_query: bool = False
    extracted_terms: str = ""
    food_keywords: Optional[str] = None


def _lower(message: Optional[str]) -> str:
    return (message or "").lower()


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def is_order_query(message: str) -> bool:
    return _contains_any(_lower(message), ORDER_QUERY_KEYWORDS)


def is_cancel_query(message: str) -> bool:
    return _contains_any(_lower(message), CANCEL_QUERY_KEYWORDS)


def is_cancel_confirmation(message: str) -> bool:
    return _contains_any(_lower(message), CANCEL_CONFIRM_KEYWORDS)


def is_food_query(message: str) -> bool:
    return _contains_any(_lower(message), FOOD_QUERY_KEYWORDS)


def is_preference_update(message: str) -> bool:
    return _contains_any(_lower(message), PREFERENCE_KEYWORDS)


def is_restaurant_search_query(message: str) -> bool:
    """Strong indicator phrase, or at least two distinct search keywords."""
    text = _lower(message)
    if _contains_any(text, STRONG_SEARCH_INDICATORS):
        return True
    match_count = sum(1 for keyword in RESTAURANT_SEARCH_KEYWORDS if keyword in text)
    return match_count >= 2


def is_confirmation(message: str) -> bool:
    """True when the message reads as a yes to a pending question."""
    text = _lower(message).strip()
    if not text:
        return False
    words = re.findall(r"\w+", text)

    def hit(keyword: str) -> bool:
        # whole words and whole phrases only: "iptal etme" must not hit "iptal etmek"
        return re.search(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)", text) is not None

    if any(word.startswith(NEGATION_PREFIXES) for word in words):
        return False
    if any(hit(neg) for neg in NEGATION_KEYWORDS):
        return False
    return any(hit(kw) for kw in CONFIRMATION_KEYWORDS)


def extract_food_keywords(message: str) -> Optional[str]:
    """Up to three known food names, longest match first; None when nothing matches."""
    text = _lower(message)
    found: List[str] = []
    for food in _FOOD_NAMES_BY_LENGTH:
        if food in text:
            found.append(food)
            if len(found) >= 3:
                break
    return " ".join(found) if found else None


def extract_search_terms(message: str) -> str:
    search_term = _lower(message)
    for pattern in _QUESTION_PATTERNS:
        search_term = pattern.sub(" ", search_term)
    search_term = re.sub(r"\s+", " ", search_term).strip()

    food_keywords = extract_food_keywords(message)
    if food_keywords:
        return food_keywords

    return search_term or (message or "")[:50]


def classify(message: str) -> IntentFlags:
    return IntentFlags(
        is_order_query=is_order_query(message),
        is_cancel_query=is_cancel_query(message),
        is_cancel_confirmation=is_cancel_confirmation(message),
        is_food_query=is_food_query(message),
        is_preference_update=is_preference_update(message),
        is_restaurant_search_query=is_restaurant_search_query(message),
        extracted_terms=extract_search_terms(message),
        food_keywords=extract_food_keywords(message),
    )


def detect_navigation(message: str, has_merchant_products: bool = False) -> Optional[str]:
    """Route for an explicit "go to X" request, else None."""
    text = _lower(message)
    if not _contains_any(text, NAVIGATION_VERBS):
        return None
    for keyword, route in NAVIGATION_ROUTES:
        if keyword in text:
            if route == "__cart__":
                return "/store/cart" if has_merchant_products else "/food/cart"
            return route
    return None


def detect_add_to_cart(
    message: str,
    products: Sequence[Dict[str, Any]],
) -> Optional[Tuple[Dict[str, Any], int]]:
    """Match an add-to-cart utterance against the products shown on a detail screen."""
    text = _lower(message)
    if not products or not _contains_any(text, ADD_TO_CART_KEYWORDS):
        return None

    stripped = _ADD_TO_CART_NOISE.sub("", text).strip()
    for product in products:
        name = str(product.get("name") or "").lower()
        if not name:
            continue
        if name in text or (stripped and stripped in name):
            match = _QUANTITY_PATTERN.search(text)
            quantity = int(match.group(1)) if match else 1
            return product, max(quantity, 1)
    return None
