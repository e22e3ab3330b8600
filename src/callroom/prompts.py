from callroom.session import ChatState
from callroom.states import ChatStep

PAGE_TITLE = "Chamada de Vídeo Privada"
PAGE_DESCRIPTION = (
    "Sala de chamada de vídeo privada com visual profissional, "
    "ideal para atendimentos individuais."
)

PERMISSION_ERROR_MESSAGE = (
    "Não foi possível acessar sua câmera ou microfone. "
    "Verifique as permissões do navegador."
)
PERMISSION_ERROR_TITLE = "Permissão necessária"

HANDOFF_TOAST_TITLE = "Sala de chamada aberta"
HANDOFF_TOAST_DESCRIPTION = (
    "Abrimos a sala de chamada em uma nova aba com a duração escolhida."
)

HANGUP_REASON = "Você encerrou a chamada."

PACKAGE_PROMPT = "Quantos minutos você quer de chamada?"
SUMMARY_PROMPT = "Revise os detalhes antes de ir para a chamada."
FINISHED_PROMPT = "Link gerado e sala aberta em outra aba."

STEP_PROMPTS = {
    ChatStep.INTRO: PACKAGE_PROMPT,
    ChatStep.MINUTES: PACKAGE_PROMPT,
    ChatStep.SUMMARY: SUMMARY_PROMPT,
    ChatStep.FINISHED: FINISHED_PROMPT,
}


def format_price(price: float) -> str:
    """BRL display: 24.9 -> 'R$ 24,90'."""
    return f"R$ {price:.2f}".replace(".", ",")


def format_duration(seconds: int) -> str:
    """Call clock: 75 -> '01:15'."""
    mins, secs = divmod(max(seconds, 0), 60)
    return f"{mins:02d}:{secs:02d}"


def get_bot_message(chat: ChatState) -> str:
    """Machine-authored chat bubble for the current step.

    Composing steps have no bubble yet; the page shows a typing indicator.
    """
    if chat.composing or chat.step.is_composing:
        return ""
    if chat.step == ChatStep.CONTACT and chat.package:
        return (
            f"Perfeito, chamada de {chat.package.minutes} minutos. "
            "Onde você quer receber o link da sala?"
        )
    return STEP_PROMPTS.get(chat.step, "")


def summary_lines(chat: ChatState) -> list[str]:
    if chat.package is None:
        return []
    lines = [f"Pacote escolhido: {chat.package.label} - {format_price(chat.package.price)}"]
    if chat.channel is not None:
        lines.append(f"Contato: {chat.channel.label} • {chat.contact_value.strip()}")
    return lines


def page_meta(canonical_url: str) -> dict:
    return {
        "title": PAGE_TITLE,
        "description": PAGE_DESCRIPTION,
        "canonical": canonical_url,
    }
