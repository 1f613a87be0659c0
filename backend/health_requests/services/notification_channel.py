"""
Outbound patient messages.

The service only composes the message and a deep link; delivery is left to
whoever opens the link (the regulation staff member's WhatsApp client).
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import quote

from health_requests.config import get_settings
from health_requests.services.auth_service import AuthService

REQUIRED_DOCUMENTS = [
    "Xerox de Identidade (RG ou CNH)",
    "Cópia da requisição",
    "Cópia do cartão SUS",
    "Requisição do médico",
    "Comprovante de residência",
]


@dataclass
class OutboundMessage:
    phone: str
    text: str
    link: str

    def to_dict(self) -> dict:
        return {"phone": self.phone, "text": self.text, "link": self.link}


class NotificationChannel(ABC):
    """Turns a message and a phone number into a dispatch action."""

    @abstractmethod
    def compose(self, phone: str, text: str) -> OutboundMessage:
        ...


class WhatsAppChannel(NotificationChannel):
    """Builds ``https://wa.me/<number>?text=<message>`` links."""

    def __init__(self, country_code: str = None):
        self.country_code = country_code if country_code is not None else get_settings().whatsapp_country_code

    def normalize_phone(self, phone: str) -> str:
        digits = re.sub(r"\D", "", phone or "")
        # National numbers have at most 11 digits (DDD + 9-digit mobile)
        if self.country_code and (len(digits) <= 11 or not digits.startswith(self.country_code)):
            digits = f"{self.country_code}{digits}"
        return digits

    def compose(self, phone: str, text: str) -> OutboundMessage:
        number = self.normalize_phone(phone)
        return OutboundMessage(
            phone=number,
            text=text,
            link=f"https://wa.me/{number}?text={quote(text, safe='')}"
        )


def format_date_br(iso_date: str) -> str:
    """``2025-03-10`` -> ``10/03/2025`` without going through timezones."""
    year, month, day = iso_date.split("-")
    return f"{day}/{month}/{year}"


def format_time(value: str) -> str:
    hours, minutes = value.split(":")[:2]
    return f"{hours}:{minutes}"


def result_view_url(request_id: int) -> str:
    """Patient-facing result link, signed so it opens without a staff login."""
    settings = get_settings()
    token = AuthService.create_result_token(request_id)
    return (
        f"{settings.public_base_url.rstrip('/')}{settings.api_v1_prefix}"
        f"/requests/{request_id}/result/view?token={token}"
    )


def format_completion_message(
    patient_name: str,
    service_kind: str,
    service_name: str,
    exam_date: str,
    exam_time: str,
    exam_location: str,
    result_url: str,
    staff_name: str
) -> str:
    """Scheduling message sent to the patient once a request is completed."""
    settings = get_settings()
    kind_label = "exame" if service_kind == "exam" else "consulta"
    documents = "\n".join(f"• {doc}" for doc in REQUIRED_DOCUMENTS)

    return (
        f"🏥 *{settings.municipality_name}*\n"
        f"*Setor de Regulação*\n\n"
        f"Olá, {patient_name}!\n\n"
        f"Informamos que sua {kind_label} *{service_name}* foi agendada:\n\n"
        f"📅 *Data:* {format_date_br(exam_date)}\n"
        f"🕐 *Horário:* {format_time(exam_time)}\n"
        f"📍 *Local:* {exam_location}\n\n"
        f"📄 *Resultado da solicitação disponível em:*\n\n"
        f"{result_url}\n\n"
        f"*📋 Documentos necessários no dia:*\n"
        f"{documents}\n\n"
        f"*Importante:*\n"
        f"• Chegue com 30 minutos de antecedência\n"
        f"• Traga documento com foto original\n"
        f"• Em caso de impedimento, comunique com antecedência\n\n"
        f"Atenciosamente,\n"
        f"{staff_name}\n"
        f"Setor de Regulação"
    )


def get_notification_channel() -> NotificationChannel:
    """Dependency returning the configured outbound channel."""
    return WhatsAppChannel()
