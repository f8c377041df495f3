"""Message template rendering for automation actions"""

from typing import Optional

from .filters import Recipient

DEFAULT_NAME = "Cliente"
# Used when the recipient carries no appointment to reference
DATE_FILLER = "hoje"
TIME_FILLER = "agora"


def render_template(template: Optional[str], recipient: Recipient) -> str:
    """
    Substitute the supported placeholders with the recipient's data.

    {{nome}}          -> recipient name (or "Cliente")
    {{telefone}}      -> recipient phone
    {{data_consulta}} -> next appointment date dd/mm/YYYY (or "hoje"); {{data}} is an alias
    {{hora}}          -> next appointment time HH:MM (or "agora")
    """
    if not template:
        return ""

    appointment_at = recipient.appointment_at
    appointment_date = appointment_at.strftime("%d/%m/%Y") if appointment_at else DATE_FILLER
    appointment_time = appointment_at.strftime("%H:%M") if appointment_at else TIME_FILLER

    return (
        template.replace("{{nome}}", recipient.name or DEFAULT_NAME)
        .replace("{{telefone}}", recipient.phone or "")
        .replace("{{data_consulta}}", appointment_date)
        .replace("{{data}}", appointment_date)
        .replace("{{hora}}", appointment_time)
    )


def build_message(action_config: Optional[dict], recipient: Recipient) -> str:
    """Message text for one recipient; use_template defaults to on"""
    action_config = action_config or {}
    template = action_config.get("message_template") or action_config.get("message") or ""
    if action_config.get("use_template", True):
        return render_template(template, recipient)
    return template
