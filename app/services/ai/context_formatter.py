"""
Context Formatter - turns datastore results into prompt text blocks

Every function takes the raw dict returned by a gateway call (or None) and
returns a text block for the system prompt or a tool result. Missing fields
fall back to neutral wording; nothing here raises on absent keys.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

from app.core.ai.types import ScratchContext, ScreenContext

UNKNOWN = "Bilinmiyor"
UNSPECIFIED = "Belirtilmemiş"

VEHICLE_LABELS = {
    "motorcycle": "Motosiklet",
    "car": "Araba",
    "bicycle": "Bisiklet",
}

TAXI_VEHICLE_LABELS = {
    "standard": "Standart",
    "comfort": "Konfor",
    "premium": "Premium",
    "xl": "XL (6+ kişi)",
}

CANCEL_REASONS = {
    "already_confirmed": "İşletme siparişi onayladığı için artık uygulama üzerinden iptal edilemez.",
    "already_cancelled": "Sipariş zaten iptal edilmiş durumda.",
    "already_delivered": "Sipariş teslim edilmiş, iptal edilemez.",
    "no_order": "Aktif sipariş bulunamadı.",
}

TAXI_CANCEL_REASONS = {
    "already_started": "Yolculuk başladığı için iptal edilemez.",
    "already_cancelled": "Yolculuk zaten iptal edilmiş.",
    "already_completed": "Yolculuk tamamlanmış, iptal edilemez.",
    "no_ride": "Aktif taksi yolculuğu bulunamadı.",
}

SCREEN_NAMES = {
    "home": "Ana Sayfa",
    "food_home": "Yemek Siparişi Ana Sayfa",
    "store_cart": "Mağaza Sepeti",
    "food_cart": "Yemek Sepeti",
    "grocery_home": "Market Ana Sayfa",
    "store_home": "Mağaza Ana Sayfa",
    "favorites": "Favoriler",
    "orders": "Siparişlerim",
    "profile": "Profil",
    "rental_home": "Araç Kiralama Ana Sayfa",
    "car_sales_home": "Araç Satış İlanları",
    "jobs_home": "İş İlanları",
    "taxi_home": "Taksi",
}

DETAIL_SCREEN_DEFAULTS = {
    "restaurant_detail": "Restoran",
    "store_detail": "Mağaza",
    "market_detail": "Market",
}


def _num(value: Any, default: str = "0") -> str:
    """Render a number without a trailing .0"""
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    if number.is_integer():
        return str(int(number))
    return f"{number:.2f}".rstrip("0").rstrip(".")


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _text(value: Any, fallback: str = UNKNOWN) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _tr_date(value: Any) -> str:
    parsed = _parse_date(value)
    return parsed.strftime("%d.%m.%Y") if parsed else _text(value)


def _tr_datetime(value: Any) -> str:
    parsed = _parse_date(value)
    return parsed.strftime("%d.%m.%Y %H:%M") if parsed else _text(value)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def format_order_status(status: Optional[Mapping[str, Any]]) -> str:
    if not status or not status.get("has_active_order"):
        return (
            "[SİSTEM BİLGİSİ - SİPARİŞ DURUMU]: Kullanıcının aktif siparişi bulunmuyor. "
            "Geçmiş siparişleri kontrol etmek istiyorsa \"Siparişlerim\" bölümüne yönlendir."
        )

    lines = [
        "[SİSTEM BİLGİSİ - SİPARİŞ DURUMU]:",
        f"- Sipariş No: #{_text(status.get('order_number'))}",
        f"- Durum: {_text(status.get('status_text') or status.get('status'))}",
        f"- Restoran/Mağaza: {_text(status.get('merchant_name'))}",
        f"- Toplam Tutar: {_num(status.get('total_amount'))} TL",
        f"- Teslimat Adresi: {_text(status.get('delivery_address'), UNSPECIFIED)}",
    ]

    state = status.get("status")
    if status.get("courier_assigned"):
        lines += ["", "📍 KURYE BİLGİLERİ:", f"- Kurye Adı: {_text(status.get('courier_name'))}"]
        vehicle = status.get("courier_vehicle_type")
        if vehicle:
            lines.append(f"- Araç: {VEHICLE_LABELS.get(vehicle, vehicle)}")
        if status.get("courier_vehicle_plate"):
            lines.append(f"- Plaka: {status['courier_vehicle_plate']}")

        if status.get("has_location") and status.get("distance_km") is not None:
            lines += [
                "",
                "⏱️ TAHMİNİ TESLİMAT:",
                f"- Kuryenin Mesafesi: {_num(status.get('distance_km'))} km",
                f"- Tahmini Varış: Yaklaşık {_num(status.get('estimated_minutes'), UNKNOWN)} dakika",
                f"- Tahmini Saat: {_text(status.get('estimated_arrival_time'))} civarı",
            ]
        elif state in ("picked_up", "on_the_way"):
            lines.append("- Kurye yolda, konum bilgisi güncelleniyor...")
        elif state in ("preparing", "ready"):
            lines.append("- Sipariş henüz kuryeye teslim edilmedi")
    elif state == "pending":
        lines += ["", "⏳ Sipariş onay bekliyor. Restoran onayladıktan sonra kurye atanacak."]
    elif state in ("confirmed", "preparing"):
        lines += ["", "👨‍🍳 Sipariş hazırlanıyor. Hazır olunca kurye atanacak."]
    else:
        lines += ["", "🔍 Kurye henüz atanmadı, en kısa sürede atanacak."]

    lines += [
        "",
        "📋 TALİMAT: Bu bilgileri kullanarak müşteriye samimi ve yardımcı bir şekilde cevap ver. "
        "Kurye bilgileri varsa mutlaka paylaş. Tahmini süreyi belirt.",
    ]
    return "\n".join(lines)


def format_cancel_result(result: Optional[Mapping[str, Any]], was_confirmed: bool = False) -> str:
    result = result or {}
    order_number = _text(result.get("order_number"), "Yok")

    if was_confirmed and result.get("success"):
        return (
            "[SİSTEM BİLGİSİ - SİPARİŞ İPTALİ]:\n"
            "✅ İPTAL BAŞARILI\n"
            f"- Sipariş No: #{order_number}\n"
            "- Durum: Sipariş başarıyla iptal edildi.\n\n"
            "📋 TALİMAT: Müşteriye siparişinin iptal edildiğini samimi bir şekilde bildir. "
            "Tekrar sipariş vermek isterse yardımcı olabileceğini söyle."
        )

    if not was_confirmed and result.get("can_cancel"):
        return (
            "[SİSTEM BİLGİSİ - SİPARİŞ İPTAL KONTROLÜ]:\n"
            "✅ İPTAL EDİLEBİLİR\n"
            f"- Sipariş No: #{order_number}\n"
            "- Durum: Sipariş henüz işletme tarafından onaylanmadı, iptal edilebilir.\n\n"
            "📋 TALİMAT: Müşteriye siparişinin iptal edilebileceğini söyle. İptal etmek istediğinden "
            "emin olup olmadığını sor. Kullanıcı açıkça onaylarsa cancel_order aracını confirmed=true ile çağır."
        )

    reason = CANCEL_REASONS.get(result.get("reason") or "", None) or _text(result.get("message"))
    return (
        "[SİSTEM BİLGİSİ - SİPARİŞ İPTAL KONTROLÜ]:\n"
        "❌ İPTAL EDİLEMEZ\n"
        f"- Sipariş No: #{order_number}\n"
        f"- Mevcut Durum: {_text(result.get('current_status'))}\n"
        f"- Sebep: {reason}\n\n"
        "📋 KURAL: Siparişler sadece \"beklemede\" (pending) durumundayken, yani işletme onaylamadan "
        "önce iptal edilebilir.\n\n"
        "📋 TALİMAT: Müşteriye kibarca siparişinin neden iptal edilemeyeceğini açıkla. İptal için "
        "işletmeyi aramasını veya müşteri hizmetleri ile iletişime geçmesini öner."
    )


# ---------------------------------------------------------------------------
# Food
# ---------------------------------------------------------------------------

def _budget_label(budget: Any) -> str:
    return {"low": "Ekonomik", "medium": "Orta"}.get(budget, "Yüksek")


def format_food_recommendation(
    recommendation: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> str:
    if not recommendation:
        return ""

    meal_type = _text(recommendation.get("meal_type"), "öğün")
    lines = [
        "[SİSTEM BİLGİSİ - YEMEK ÖNERİSİ]:",
        f"🍽️ ÖĞÜN: {meal_type.upper()} (Saat: {_num(recommendation.get('current_hour'), '?')}:00)",
    ]

    prefs = recommendation.get("user_preferences")
    if prefs:
        lines += ["", "👤 KULLANICI TERCİHLERİ:"]
        if _list(prefs.get("favorite_cuisines")):
            lines.append(f"- Favori Mutfaklar: {', '.join(prefs['favorite_cuisines'])}")
        if _list(prefs.get("dietary_restrictions")):
            lines.append(f"- Diyet Kısıtlamaları: {', '.join(prefs['dietary_restrictions'])}")
        if _list(prefs.get("allergies")):
            lines.append(f"- Alerjiler: {', '.join(prefs['allergies'])} ⚠️ DİKKAT!")
        if _list(prefs.get("disliked_ingredients")):
            lines.append(f"- Sevmediği Malzemeler: {', '.join(prefs['disliked_ingredients'])}")
        lines.append(f"- Acı Seviyesi: {_num(prefs.get('spice_level'), '?')}/5")
        lines.append(f"- Bütçe: {_budget_label(prefs.get('budget_range'))}")
    else:
        lines += ["", "👤 KULLANICI TERCİHLERİ: Henüz kaydedilmemiş. Tercihleri sorabilirsin!"]

    history = recommendation.get("order_history")
    if history:
        lines += [
            "",
            "📊 SİPARİŞ GEÇMİŞİ:",
            f"- Toplam Sipariş: {_num(history.get('total_orders'))}",
            f"- Farklı Restoran: {_num(history.get('unique_merchants'))}",
        ]
        if _list(history.get("ordered_cuisines")):
            lines.append(f"- Denenen Mutfaklar: {', '.join(history['ordered_cuisines'])}")
        lines.append(f"- Ortalama Sipariş: {_num(history.get('avg_order_amount'))} TL")
        lines.append(f"- En Sık Sipariş Saati: {_num(history.get('most_common_order_hour'), '?')}:00")
        last_order = _parse_date(history.get("last_order_date"))
        if last_order:
            days = ((now or datetime.now(timezone.utc)) - last_order).days
            label = "Bugün" if days <= 0 else "Dün" if days == 1 else f"{days} gün önce"
            lines.append(f"- Son Sipariş: {label}")

    favorites = _list(recommendation.get("favorite_restaurants"))
    if favorites:
        lines += ["", "⭐ FAVORİ RESTORANLAR:"]
        for i, rest in enumerate(favorites, 1):
            lines.append(f"{i}. {_text(rest.get('name'))} ({_num(rest.get('order_count'))} sipariş)")

    lines += [
        "",
        "📋 ÖNERİ TALİMATLARI:",
        "- Kullanıcının tercihlerine ve geçmişine göre kişiselleştirilmiş öneriler ver",
        "- Alerjileri ve kısıtlamaları KESİNLİKLE dikkate al",
        f"- Öğün saatine uygun öneriler yap ({meal_type})",
        "- Bütçeye uygun seçenekler sun",
        "- Belirli restoran veya ürün önermeden önce search_food aracıyla gerçek verileri getir",
        "- Arama sonucu yoksa genel yemek türü öner (ör: \"kebap\", \"pizza\") ama ASLA restoran veya menü adı uydurma",
        "- Samimi ve arkadaşça bir dil kullan",
    ]
    return "\n".join(lines)


def format_promotions(promotions: Optional[Mapping[str, Any]]) -> str:
    if not promotions or not promotions.get("has_promotions"):
        return ""
    lines = ["🎉 AKTİF KAMPANYALAR:"]
    for promo in _list(promotions.get("active_promotions")):
        lines.append(f"- {_text(promo.get('business_name'))}: {_text(promo.get('discount_badge'), '')}")
    return "\n".join(lines)


def format_restaurant_search(result: Optional[Mapping[str, Any]]) -> str:
    """Food / store search results in the ai_search_restaurants shape."""
    result = result or {}
    query = _text(result.get("search_query"), "")
    restaurants = _list(result.get("restaurants"))

    if not restaurants:
        return (
            "[SİSTEM BİLGİSİ - RESTORAN ARAMA]:\n"
            f"🔍 Arama: \"{query}\"\n"
            "❌ Sonuç bulunamadı.\n\n"
            "📋 TALİMAT: Kullanıcıya aradığı ürünü sunan restoran bulunamadığını belirt. "
            "Benzer ürünler veya farklı anahtar kelimelerle arama yapmasını öner."
        )

    lines = [
        "[SİSTEM BİLGİSİ - RESTORAN ARAMA SONUÇLARI]:",
        f"🔍 Arama: \"{query}\"",
        f"📊 Bulunan: {result.get('result_count') or len(restaurants)} işletme",
        "",
        "🏆 EN İYİ SONUÇLAR:",
    ]
    for i, rest in enumerate(restaurants[:5], 1):
        rating = rest.get("rating")
        fee = rest.get("delivery_fee") or 0
        lines += [
            "",
            f"{i}. {_text(rest.get('business_name'))}",
            f"   ⭐ Puan: {f'{_float(rating):.1f}' if _float(rating) else 'Yeni'} ({_num(rest.get('review_count'))} değerlendirme)",
            f"   📦 Toplam Sipariş: {_num(rest.get('total_orders'))}",
            f"   🚚 Teslimat: {_text(rest.get('delivery_time'), '30-45 dk')} | "
            f"{_num(fee) + ' TL' if _float(fee) > 0 else 'Ücretsiz'}",
            f"   📍 {_text(rest.get('address'), 'Adres bilgisi yok')}",
        ]
        if rest.get("discount_badge"):
            lines.append(f"   🎉 Kampanya: {rest['discount_badge']}")
        if rest.get("is_open") is False:
            lines.append("   ⚠️ ŞU AN KAPALI")

        items = _list(rest.get("matching_items"))
        if items:
            lines.append("   🍽️ Eşleşen Ürünler:")
            for item in items[:3]:
                discounted = item.get("discounted_price")
                price = discounted or item.get("price")
                original = f" (eski fiyat {_num(item.get('price'))} TL)" if discounted else ""
                popular = " ⭐Popüler" if item.get("is_popular") else ""
                lines.append(f"      - {_text(item.get('name'))}: {_num(price)} TL{original}{popular}")

        reviews = _list(rest.get("recent_good_reviews"))
        if reviews:
            lines.append("   💬 Son İyi Yorumlar:")
            for review in reviews[:2]:
                comment = _text(review.get("comment"), "")
                if len(comment) > 60:
                    comment = comment[:60] + "..."
                lines.append(
                    f"      \"{comment}\" - {_text(review.get('customer_name'), 'Müşteri')} "
                    f"(⭐{_num(review.get('rating'), '?')})"
                )

    lines += [
        "",
        "📋 TALİMAT:",
        "- Ürün kartları kullanıcıya ayrıca gösteriliyor; fiyat listesini tekrar yazma, kısa bir özet ver",
        "- En yüksek puanlı ve en çok sipariş alan işletmeleri öne çıkar",
        "- Açık/kapalı durumunu mutlaka belirt",
        "- Samimi ve yardımcı bir dil kullan",
    ]
    return "\n".join(lines)


def format_merchant_products(
    products: Iterable[Mapping[str, Any]],
    total_count: Optional[int] = None,
    entity_name: Optional[str] = None,
) -> str:
    products = list(products or [])
    if not products:
        return ""

    lines = [
        f"[SİSTEM BİLGİSİ - {(entity_name or 'MAĞAZA').upper()} ÜRÜNLERİ]:",
        f"📦 Toplam {total_count or len(products)} ürün bulundu.",
        "",
        "🛍️ ÜRÜNLER:",
    ]
    for i, product in enumerate(products[:10], 1):
        price = product.get("discounted_price") or product.get("price")
        old_price = None
        if product.get("discounted_price") and product.get("discounted_price") != product.get("price"):
            old_price = product.get("price")
        elif product.get("original_price") and product.get("original_price") != product.get("price"):
            old_price = product.get("original_price")

        line = f"{i}. {_text(product.get('name'))} - {_num(price)} TL"
        if old_price:
            line += f" (İndirimli! Eski: {_num(old_price)} TL)"
        if product.get("description"):
            line += f"\n   {str(product['description'])[:80]}"
        if product.get("is_popular") or product.get("is_featured"):
            line += " ⭐Popüler"
        stock = product.get("stock")
        if isinstance(stock, (int, float)) and 0 < stock <= 5:
            line += f" ⚠️Son {_num(stock)} adet"
        if product.get("brand"):
            line += f" | Marka: {product['brand']}"
        lines.append(line)

    lines += [
        "",
        "📋 TALİMAT:",
        "- Kullanıcı ürün sorarsa bu listeden bilgi ver",
        "- Fiyatları ve indirimleri belirt",
        "- Stok durumunu paylaş",
    ]
    return "\n".join(lines)


def format_merchant_info(merchant: Optional[Mapping[str, Any]], commission_rate: float = 15.0) -> str:
    if not merchant:
        return ""
    type_text = "Restoran" if merchant.get("type") == "restaurant" else "Mağaza"
    rate = _num(merchant.get("commission_rate", commission_rate))
    return (
        "[SİSTEM BİLGİSİ - İŞLETME BİLGİLERİ]:\n"
        f"- İşletme Adı: {_text(merchant.get('business_name'))}\n"
        f"- İşletme Türü: {type_text}\n"
        f"- Komisyon Oranı: %{rate}\n"
        f"- Hesap Durumu: {'Aktif' if merchant.get('is_active') else 'Pasif'}\n"
        f"- Kayıt Tarihi: {_tr_date(merchant.get('created_at'))}\n\n"
        "Bu işletme bilgilerini kullanarak sorulara yanıt ver. Komisyon oranı sorulduğunda "
        f"kesin olarak %{rate} olduğunu söyle."
    )


def format_preference_saved(result: Optional[Mapping[str, Any]], preference_type: str, value: str) -> str:
    if result is not None and result.get("success") is False:
        return "Tercih kaydedilemedi. Kullanıcıya daha sonra tekrar denemesini söyle."
    return f"Tercih kaydedildi: {preference_type} = {value}. Kullanıcıya tercihini hatırlayacağını kısaca belirt."


# ---------------------------------------------------------------------------
# Rental cars, car sales, jobs
# ---------------------------------------------------------------------------

def format_rental_search(result: Optional[Mapping[str, Any]]) -> str:
    cars = _list((result or {}).get("cars"))
    if not cars:
        return (
            "[SİSTEM BİLGİSİ - ARAÇ KİRALAMA]: Kriterlere uygun müsait kiralık araç bulunamadı. "
            "Kullanıcıya farklı tarih, kategori veya şehir denemesini öner."
        )

    lines = [
        "[SİSTEM BİLGİSİ - KİRALIK ARAÇLAR]:",
        f"🚗 Bulunan: {(result or {}).get('result_count') or len(cars)} araç",
    ]
    for i, car in enumerate(cars[:8], 1):
        lines.append(
            f"{i}. {_text(car.get('brand'), '')} {_text(car.get('model'), '')} ({_num(car.get('year'), '?')}) - "
            f"{_num(car.get('daily_price'))} TL/gün | {_text(car.get('transmission'), UNSPECIFIED)} | "
            f"{_text(car.get('fuel_type'), UNSPECIFIED)} | {_text(car.get('company_name'), UNKNOWN)}"
        )
    lines += [
        "",
        "📋 TALİMAT: Araç kartları kullanıcıya ayrıca gösteriliyor. Kısa bir özet ver, "
        "en uygun fiyatlı ve en uygun kategorideki seçenekleri öne çıkar.",
    ]
    return "\n".join(lines)


def format_rental_booking_status(result: Optional[Mapping[str, Any]]) -> str:
    if not result or not result.get("has_active_booking"):
        return "[SİSTEM BİLGİSİ - KİRALAMA REZERVASYONU]: Kullanıcının aktif araç kiralama rezervasyonu bulunmuyor."
    return (
        "[SİSTEM BİLGİSİ - KİRALAMA REZERVASYONU]:\n"
        f"- Rezervasyon No: #{_text(result.get('booking_number'))}\n"
        f"- Durum: {_text(result.get('status_text') or result.get('status'))}\n"
        f"- Araç: {_text(result.get('brand'), '')} {_text(result.get('model'), '')}\n"
        f"- Teslim Alma: {_tr_datetime(result.get('pickup_date'))} - {_text(result.get('pickup_location'), UNSPECIFIED)}\n"
        f"- İade: {_tr_datetime(result.get('dropoff_date'))}\n"
        f"- Toplam Tutar: {_num(result.get('total_price'))} TL"
    )


def format_car_listings(result: Optional[Mapping[str, Any]]) -> str:
    listings = _list((result or {}).get("listings"))
    if not listings:
        return "[SİSTEM BİLGİSİ - ARAÇ İLANLARI]: Kriterlere uygun satılık araç ilanı bulunamadı."

    lines = ["[SİSTEM BİLGİSİ - SATILIK ARAÇ İLANLARI]:"]
    for i, car in enumerate(listings[:8], 1):
        lines.append(
            f"{i}. {_text(car.get('brand'), '')} {_text(car.get('model'), '')} {_num(car.get('year'), '')} - "
            f"{_num(car.get('price'))} TL | {_num(car.get('mileage'), '?')} km | "
            f"{_text(car.get('fuel_type'), UNSPECIFIED)} | {_text(car.get('city'), UNSPECIFIED)}"
        )
    lines += ["", "📋 TALİMAT: İlanları kısaca özetle, ilan numarası veya iç kimlik bilgisi paylaşma."]
    return "\n".join(lines)


def format_job_listings(result: Optional[Mapping[str, Any]]) -> str:
    jobs = _list((result or {}).get("jobs"))
    if not jobs:
        return "[SİSTEM BİLGİSİ - İŞ İLANLARI]: Kriterlere uygun iş ilanı bulunamadı."

    lines = ["[SİSTEM BİLGİSİ - İŞ İLANLARI]:"]
    for i, job in enumerate(jobs[:8], 1):
        salary = ""
        if job.get("salary_min") or job.get("salary_max"):
            salary = f" | Maaş: {_num(job.get('salary_min'), '?')}-{_num(job.get('salary_max'), '?')} TL"
        lines.append(
            f"{i}. {_text(job.get('title'))} - {_text(job.get('company_name'))} | "
            f"{_text(job.get('city'), UNSPECIFIED)} | {_text(job.get('job_type'), UNSPECIFIED)}{salary}"
        )
    lines += ["", "📋 TALİMAT: İlanları kısaca özetle ve başvuru için uygulamadaki iş ilanları bölümüne yönlendir."]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Taxi
# ---------------------------------------------------------------------------

def format_taxi_fare(result: Optional[Mapping[str, Any]]) -> str:
    options = _list((result or {}).get("options"))
    if not options:
        return "[SİSTEM BİLGİSİ - TAKSİ ÜCRETİ]: Şu an ücret tahmini yapılamıyor."

    lines = ["[SİSTEM BİLGİSİ - TAKSİ ÜCRET TAHMİNİ]:"]
    for option in options:
        vehicle = option.get("vehicle_type")
        label = TAXI_VEHICLE_LABELS.get(vehicle, _text(vehicle))
        line = (
            f"- {label}: açılış {_num(option.get('base_fare'))} TL, km başı {_num(option.get('per_km_rate'))} TL"
        )
        if option.get("minimum_fare"):
            line += f", minimum {_num(option['minimum_fare'])} TL"
        if option.get("estimated_fare"):
            line += f" (tahmini {_num(option['estimated_fare'])} TL)"
        lines.append(line)
    lines += ["", "📋 TALİMAT: Ücretlerin tahmini olduğunu, trafik ve mesafeye göre değişebileceğini belirt."]
    return "\n".join(lines)


def format_taxi_ride_status(result: Optional[Mapping[str, Any]]) -> str:
    if not result or not result.get("has_active_ride"):
        return "[SİSTEM BİLGİSİ - TAKSİ DURUMU]: Kullanıcının aktif taksi yolculuğu bulunmuyor."

    lines = [
        "[SİSTEM BİLGİSİ - TAKSİ DURUMU]:",
        f"- Yolculuk No: #{_text(result.get('ride_number'))}",
        f"- Durum: {_text(result.get('status_text') or result.get('status'))}",
        f"- Alış: {_text(result.get('pickup_address'), UNSPECIFIED)}",
        f"- Varış: {_text(result.get('dropoff_address'), UNSPECIFIED)}",
    ]
    if result.get("driver_name"):
        vehicle = " ".join(
            str(part) for part in (result.get("vehicle_color"), result.get("vehicle_model")) if part
        )
        lines.append(f"- Sürücü: {result['driver_name']}")
        if vehicle:
            lines.append(f"- Araç: {vehicle}")
        if result.get("vehicle_plate"):
            lines.append(f"- Plaka: {result['vehicle_plate']}")
    if result.get("eta_minutes") is not None:
        lines.append(f"- Tahmini Varış: Yaklaşık {_num(result['eta_minutes'])} dakika")
    if result.get("estimated_fare"):
        lines.append(f"- Tahmini Ücret: {_num(result['estimated_fare'])} TL")
    return "\n".join(lines)


def format_taxi_cancel(result: Optional[Mapping[str, Any]], was_confirmed: bool = False) -> str:
    result = result or {}
    ride_number = _text(result.get("ride_number"), "Yok")

    if was_confirmed and result.get("success"):
        return (
            "[SİSTEM BİLGİSİ - TAKSİ İPTALİ]:\n"
            f"✅ Yolculuk #{ride_number} iptal edildi.\n"
            "📋 TALİMAT: Kullanıcıya iptalin tamamlandığını bildir."
        )

    if not was_confirmed and result.get("can_cancel"):
        fee = result.get("cancellation_fee")
        fee_text = f" İptal ücreti: {_num(fee)} TL." if fee else ""
        return (
            "[SİSTEM BİLGİSİ - TAKSİ İPTAL KONTROLÜ]:\n"
            f"✅ Yolculuk #{ride_number} iptal edilebilir.{fee_text}\n"
            "📋 TALİMAT: Kullanıcıya iptal etmek istediğinden emin olup olmadığını sor. "
            "Açıkça onaylarsa cancel_taxi_ride aracını confirmed=true ile çağır."
        )

    reason = TAXI_CANCEL_REASONS.get(result.get("reason") or "", None) or _text(result.get("message"))
    return (
        "[SİSTEM BİLGİSİ - TAKSİ İPTAL KONTROLÜ]:\n"
        f"❌ Yolculuk #{ride_number} iptal edilemez.\n"
        f"- Mevcut Durum: {_text(result.get('current_status'))}\n"
        f"- Sebep: {reason}"
    )


def format_taxi_request(result: Optional[Mapping[str, Any]], was_confirmed: bool = False) -> str:
    result = result or {}
    vehicle = TAXI_VEHICLE_LABELS.get(result.get("vehicle_type"), _text(result.get("vehicle_type"), "Standart"))

    if was_confirmed:
        if result.get("success"):
            return (
                "[SİSTEM BİLGİSİ - TAKSİ ÇAĞRISI]:\n"
                f"✅ Taksi çağrıldı. Yolculuk No: #{_text(result.get('ride_number'))}\n"
                f"- Araç Tipi: {vehicle}\n"
                f"- Durum: {_text(result.get('status_text') or result.get('status'), 'Sürücü aranıyor')}\n"
                "📋 TALİMAT: Kullanıcıya taksinin çağrıldığını ve sürücü atanınca bilgilendirileceğini söyle."
            )
        return (
            "[SİSTEM BİLGİSİ - TAKSİ ÇAĞRISI]: Taksi çağrılamadı. "
            f"{_text(result.get('message'), 'Lütfen daha sonra tekrar deneyin.')}"
        )

    if result.get("can_request"):
        return (
            "[SİSTEM BİLGİSİ - TAKSİ ÇAĞRI ÖN KONTROLÜ]:\n"
            f"- Alış Noktası: {_text(result.get('pickup_address'), 'Varsayılan adres')}\n"
            f"- Varış: {_text(result.get('destination'), UNSPECIFIED)}\n"
            f"- Araç Tipi: {vehicle}\n"
            f"- Tahmini Ücret: {_num(result.get('estimated_fare'), UNKNOWN)} TL\n"
            "📋 TALİMAT: Bilgileri özetle ve taksiyi çağırmak için kullanıcıdan onay iste. "
            "Açıkça onaylarsa request_taxi aracını confirmed=true ile çağır."
        )

    return (
        "[SİSTEM BİLGİSİ - TAKSİ ÇAĞRI ÖN KONTROLÜ]: Şu an taksi çağrılamıyor. "
        f"Sebep: {_text(result.get('message') or result.get('reason'))}"
    )


def format_taxi_history(result: Optional[Mapping[str, Any]]) -> str:
    rides = _list((result or {}).get("rides"))
    if not rides:
        return "[SİSTEM BİLGİSİ - TAKSİ GEÇMİŞİ]: Kullanıcının geçmiş taksi yolculuğu bulunmuyor."

    lines = ["[SİSTEM BİLGİSİ - TAKSİ GEÇMİŞİ]:"]
    for i, ride in enumerate(rides[:10], 1):
        lines.append(
            f"{i}. {_tr_date(ride.get('created_at'))} | {_text(ride.get('pickup_address'), '?')} → "
            f"{_text(ride.get('dropoff_address'), '?')} | {_num(ride.get('fare'), '?')} TL | "
            f"{_text(ride.get('status_text') or ride.get('status'))}"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------

def filter_knowledge_base(message: str, entries: Iterable[Mapping[str, Any]], limit: int = 3) -> List[Mapping[str, Any]]:
    """Entries whose question or category shares a word longer than 2 chars with the message."""
    words = [w for w in (message or "").lower().split() if len(w) > 2]
    if not words:
        return []
    relevant = []
    for entry in entries or []:
        haystack = f"{entry.get('question') or ''} {entry.get('category') or ''}".lower()
        if any(word in haystack for word in words):
            relevant.append(entry)
            if len(relevant) >= limit:
                break
    return relevant


def format_knowledge_base(entries: Iterable[Mapping[str, Any]]) -> str:
    entries = list(entries or [])
    if not entries:
        return ""
    lines = ["İLGİLİ BİLGİLER:"]
    for i, entry in enumerate(entries, 1):
        lines.append(f"{i}. S: {_text(entry.get('question'), '')}\n   C: {_text(entry.get('answer'), '')}")
    return "\n".join(lines)


def format_screen_context(screen: Optional[ScreenContext]) -> str:
    if not screen or not screen.screen_type:
        return ""
    if screen.screen_type in DETAIL_SCREEN_DEFAULTS:
        label = f"{screen.entity_name or DETAIL_SCREEN_DEFAULTS[screen.screen_type]} Detay Sayfası"
    else:
        label = SCREEN_NAMES.get(screen.screen_type, screen.screen_type)
    return f"[EKRAN BAĞLAMI]: Kullanıcı şu anda \"{label}\" sayfasında."


def format_search_hint(terms: Optional[str]) -> str:
    terms = (terms or "").strip()
    if not terms:
        return ""
    return f"[ARAMA]: Kullanıcı \"{terms}\" arıyor. Sonuç vermeden önce search_food aracını bu terimlerle çağır."


def format_scratch_context(scratch: Optional[ScratchContext]) -> str:
    """Previous turn's search results and cart additions, for resolving "add it" style follow-ups."""
    if not scratch or scratch.is_empty():
        return ""

    lines = ["[ÖNCEKİ TUR BAĞLAMI]:"]
    if scratch.last_search_context:
        lines.append("Son arama sonuçları (sepete ekleme için bu bilgileri kullan, kimlikleri kullanıcıya gösterme):")
        for i, item in enumerate(scratch.last_search_context, 1):
            lines.append(
                f"{i}. {_text(item.get('name'))} - {_num(item.get('price'))} TL | "
                f"{_text(item.get('merchant_name'), '')} | product_id={item.get('product_id')} "
                f"merchant_id={item.get('merchant_id')} merchant_type={item.get('merchant_type') or 'restaurant'}"
            )
    if scratch.last_cart_context:
        lines.append("Son sepete eklenenler:")
        for item in scratch.last_cart_context:
            lines.append(f"- {_num(item.get('quantity'), '1')} x {_text(item.get('name'))} ({_text(item.get('merchant_name'), '')})")
    if scratch.pending_confirmation:
        lines.append(
            f"Bekleyen onay: {scratch.pending_confirmation.get('tool')} işlemi için kullanıcıdan onay istendi."
        )
    return "\n".join(lines)
