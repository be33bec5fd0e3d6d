"""
Prompt assembly for one chat turn
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from app.core.ai.types import ScratchContext, ScreenContext
from app.services.ai import context_formatter as fmt

DEFAULT_PERSONA = "Sen yardımcı bir asistansın."

HARD_RULES = [
    "ASLA veritabanında olmayan restoran adı, menü adı veya ürün ismi UYDURMAYACAKSIN. Bu en önemli kural.",
    "Ürün, fiyat veya restoran hakkında bilgi vermeden önce MUTLAKA search_food aracını çağır ve SADECE "
    "dönen gerçek verileri kullan.",
    "Arama sonucu yoksa veya boşsa \"Maalesef şu an bu ürünü sunan aktif bir restoran bulamadım\" de. "
    "Uydurma isim verme.",
    "Kullanıcıya ASLA ürün/işletme kimliği (ID, UUID) veya köşeli parantezli sistem etiketi gösterme.",
    "Kullanıcı \"ekle\", \"onu ekle\", \"evet\" gibi kısa bir onay verirse, en son önerdiğin ürünü kullan; "
    "başka bir ürün seçme.",
    "Kullanıcı birden fazla farklı ürün isterse her ürün için ayrı bir add_to_cart çağrısı yap.",
    "İptal veya taksi çağırma gibi geri alınamaz işlemleri önce confirmed=false ile kontrol et; "
    "kullanıcı son mesajında açıkça onaylamadan confirmed=true kullanma.",
    "Bilmediğin veya sana verilmeyen konularda bilgi uydurma. Emin olmadığın bilgileri kesin ifadelerle paylaşma.",
    "SADECE sana verilen sistem bilgileri doğrultusunda cevap ver.",
    "Yanıtlarını kısa, samimi ve Türkçe tut.",
    "Ürün veya araç kartları kullanıcıya ayrıca gösteriliyorsa fiyat listesini tekrar yazma; "
    "kısa bir özet ver ve kartlara yönlendir.",
]

ALLERGY_RULES = """ALERJİ KURALLARI:
- Yemek önerirken bu alerjenlere DİKKAT ET
- Restoran ürün içeriği eklememişse, o yemeğin genel tarifinde bu alerjen varsa UYAR
- Uyarı formatı: "Bu restoran içerik bilgisi eklememiş ama [yemek] genellikle [alerjen] içerebilir, dikkatli olmanızı öneririm"
- KESİN ifade KULLANMA. "İçerebilir", "ihtimali var", "dikkatli olun" gibi ihtimal belirten ifadeler kullan
- İçerik bilgisi olmayan ürünlerde HER ZAMAN uyar"""


def format_hard_rules() -> str:
    numbered = "\n".join(f"{i}. {rule}" for i, rule in enumerate(HARD_RULES, 1))
    return f"KRİTİK KURALLAR:\n{numbered}"


def format_allergies(allergies: Optional[Iterable[Any]]) -> str:
    cleaned = [str(a).strip() for a in (allergies or []) if a and str(a).strip()]
    if not cleaned:
        return ""
    return f"⚠️ KULLANICI ALERJİLERİ: {', '.join(cleaned)}\n{ALLERGY_RULES}"


def build_system_prompt(
    *,
    message: str,
    prompt_row: Optional[Mapping[str, Any]] = None,
    allergies: Optional[Iterable[Any]] = None,
    knowledge_base: Optional[Iterable[Mapping[str, Any]]] = None,
    screen_context: Optional[ScreenContext] = None,
    merchant_products: str = "",
    context_blocks: Sequence[str] = (),
    scratch: Optional[ScratchContext] = None,
) -> str:
    """
    Persona and restrictions, hard rules, allergy block, knowledge-base
    snippets, screen label, merchant products, pre-fetched context, then the
    previous turn's scratch context. Empty sections are skipped.
    """
    prompt_row = prompt_row or {}
    persona = prompt_row.get("system_prompt") or DEFAULT_PERSONA
    restrictions = prompt_row.get("restrictions") or ""

    sections = [
        f"{persona}\n\nKISITLAMALAR:\n{restrictions}".rstrip(),
        format_hard_rules(),
        format_allergies(allergies),
        fmt.format_knowledge_base(fmt.filter_knowledge_base(message, knowledge_base or [])),
        fmt.format_screen_context(screen_context),
        merchant_products,
        *context_blocks,
        fmt.format_scratch_context(scratch),
    ]
    return "\n\n".join(section for section in sections if section)


def build_messages(
    system_prompt: str,
    history: Optional[Iterable[Mapping[str, Any]]],
    message: str,
) -> List[Dict[str, Any]]:
    """System message, filtered history, then the user message unless it is already last."""
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    history = [h for h in (history or []) if h.get("role") in ("user", "assistant")]
    for entry in history:
        messages.append({"role": entry["role"], "content": entry.get("content") or ""})

    # the user message is saved concurrently with the history read, so it may already be there
    if not history or history[-1].get("role") != "user" or history[-1].get("content") != message:
        messages.append({"role": "user", "content": message})
    return messages
