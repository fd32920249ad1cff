from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from crm_assistant.config import ASSISTANT_NAME
from crm_assistant.conversation.types import Resolution
from crm_assistant.core.snapshot_loader import CurrentUser

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "Kullanıcı"

FORMAT_DIRECTIVES = (
    "Yanıtını şu şekilde formatla:\n"
    "- Başlıkları kalın (markdown **Başlık**) olarak kullan.\n"
    "- Listeleri madde işareti (-) ile oluştur.\n"
    "- Bölümler arasında bir satır boşluk bırak."
)

GROUNDED_INSTRUCTIONS = (
    "Cevabını sadece kullanıcı sorusuna odakla ve sağlanan veriyi kullanarak doğrudan ve eksiksiz bir yanıt ver. "
    "Eğer bir klinik detayı istendiyse, hem klinik bilgilerini hem de ilişkili son 1 aylık aktiviteleri "
    "(ziyaret, ameliyat, teklif) özetle. Veri özetini tekrarlama veya ek açıklama isteme. "
    "İstenen tüm bilgileri açıkça listele veya özetle. "
    "Eğer belirli bir bilgi veride yoksa, 'Belirtilmemiş' veya 'Bulunamadı' de."
)

GENERIC_INSTRUCTIONS = (
    "Eğer soru CRM sistemiyle ilgili değilse (klinik, teklif, rapor, ziyaret, ürün, kampanya, kullanıcı, takım vb.), "
    "kibarca sadece CRM ile ilgili yardımcı olabileceğini belirt. "
    "Eğer soru genel bir CRM sorusuysa ve spesifik veri gerektirmiyorsa (örn: 'neler yapabilirsin?'), "
    "yeteneklerini özetle. Eğer spesifik veri isteniyorsa ama veri bulunamadıysa veya soru anlaşılamadıysa, "
    "bilginin sistemde olmadığını veya soruyu anlayamadığını belirt."
)


def _persona(current_user: Optional[CurrentUser]) -> str:
    name = current_user.name if current_user is not None and current_user.name else DEFAULT_USER_NAME
    return f"Sen {ASSISTANT_NAME}, bir CRM asistanısın. Kullanıcının adı {name}."


def compose_prompt(message: str, resolution: Resolution, current_user: Optional[CurrentUser] = None) -> str:
    """
    Build the model prompt.

    With retrieved data the prompt carries the grounding block, the literal
    question and the formatting rules; otherwise a shorter generic template
    asks the model to answer or to say the data is not available.
    """
    question = message.strip()
    if resolution.retrieved:
        return (
            f"{_persona(current_user)} "
            "Kullanıcının sorusunu yanıtlamak için aşağıdaki CRM verilerini kullan:\n\n"
            f"{resolution.context}\n\n"
            f'Kullanıcının Sorusu: "{question}"\n\n'
            f"{FORMAT_DIRECTIVES}\n\n"
            f"{GROUNDED_INSTRUCTIONS}"
        )
    return f'{_persona(current_user)} Kullanıcının şu sorusuna cevap ver: "{question}". {GENERIC_INSTRUCTIONS}'


# ---------------------------------------------------------------------------
# Chat / analysis modes
# ---------------------------------------------------------------------------

DEFAULT_MODE = "default"

# mode -> (display name, system prompt)
PROMPT_MODES: Dict[str, tuple] = {
    "chat": (
        "Genel Sohbet",
        "ART CRM sisteminde bir yardımcı AI asistansın. Sorulara kısa, net ve doğru yanıtlar ver.",
    ),
    "crm_analysis": (
        "CRM Analizi",
        "CRM sistemlerini derinlemesine analiz edebilen bir uzman AI asistansın. Müşteri ilişkileri, "
        "satış süreçleri ve veri analizi konusunda geniş bilgiye sahipsin.",
    ),
    "customer_behavior": (
        "Müşteri Davranışı",
        "Müşteri davranışları konusunda uzmanlaşmış bir AI asistansın. Davranış psikolojisi, motivasyon "
        "faktörleri ve satın alma eğilimleri hakkında bilgi verebilirsin.",
    ),
    "sales_forecast": (
        "Satış Tahmini",
        "Satış tahminleri ve trend analizi konusunda uzmanlaşmış bir AI asistansın. Veri modellemesi, "
        "tahmin algoritmaları ve pazar analizi yapabilirsin.",
    ),
    "meeting_summary": (
        "Toplantı Özeti",
        "Toplantı notlarını özetleme konusunda uzmanlaşmış bir AI asistansın. Karmaşık konuları net, kısa "
        "ve anlaşılır özetlere dönüştürebilirsin.",
    ),
    "clinic_analysis": (
        "Klinik Analizi",
        "Klinik performansı ve sağlık sektörü analizi konusunda uzmanlaşmış bir AI asistansın. Verimlilik, "
        "hasta memnuniyeti ve operasyonel iyileştirmeler önerebilirsin.",
    ),
    "product_recommendation": (
        "Ürün Tavsiyesi",
        "Medikal ürün uzmanı bir AI asistansın. Hastalar ve klinikler için en uygun ürünleri önerebilir, "
        "detaylı karşılaştırmalar yapabilirsin.",
    ),
    "proposal_draft": (
        "Teklif Taslağı",
        "Profesyonel teklif yazarı bir AI asistansın. İkna edici, kapsamlı ve net teklifler hazırlayabilirsin.",
    ),
}

DEFAULT_SYSTEM_PROMPT = (
    "ART CRM sisteminde bir yardımcı AI asistansın. Kullanıcılara CRM, satış, pazarlama ve müşteri "
    "ilişkileri konularında yardımcı olabilirsin."
)


def system_prompt_for(mode: Optional[str]) -> str:
    entry = PROMPT_MODES.get(mode or DEFAULT_MODE)
    return entry[1] if entry else DEFAULT_SYSTEM_PROMPT


def mode_display_name(mode: Optional[str]) -> str:
    entry = PROMPT_MODES.get(mode or DEFAULT_MODE)
    return entry[0] if entry else "Varsayılan"


# ---------------------------------------------------------------------------
# Analysis context payload
# ---------------------------------------------------------------------------

class ContextPayloadError(ValueError):
    """Raised when an analysis context payload is not a JSON object."""

    MESSAGE = "Bağlam verisi geçerli JSON formatında değil!"

    def __init__(self, detail: str = ""):
        super().__init__(self.MESSAGE)
        self.detail = detail


def parse_context_payload(raw: Optional[str]) -> Dict[str, Any]:
    """Blank payloads give {}; anything but a JSON object raises ContextPayloadError."""
    if raw is None or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ContextPayloadError(str(exc)) from exc
    if not isinstance(data, dict):
        raise ContextPayloadError(f"expected an object, got {type(data).__name__}")
    return data


def compose_analysis_prompt(prompt: str, context: Optional[Dict[str, Any]] = None) -> str:
    text = prompt.strip()
    if context:
        payload = json.dumps(context, ensure_ascii=False, indent=2, default=str)
        text += f"\n\nBağlam Verileri:\n{payload}"
    return text
