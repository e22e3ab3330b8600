from enum import Enum

COMPOSING_STEPS = {
    "minutes_confirmed", "contact_typing",
    "contact_confirmed", "summary_typing",
}
PACKAGE_STEPS = {"intro", "minutes"}


class ChatStep(Enum):
    INTRO = "intro"
    MINUTES = "minutes"
    MINUTES_CONFIRMED = "minutes_confirmed"
    CONTACT_TYPING = "contact_typing"
    CONTACT = "contact"
    CONTACT_CONFIRMED = "contact_confirmed"
    SUMMARY_TYPING = "summary_typing"
    SUMMARY = "summary"
    FINISHED = "finished"

    @property
    def is_composing(self) -> bool:
        return self.value in COMPOSING_STEPS

    @property
    def offers_packages(self) -> bool:
        return self.value in PACKAGE_STEPS

    @property
    def order(self) -> int:
        return STEP_ORDER.index(self)

    def next(self) -> "ChatStep":
        return STEP_ORDER[self.order + 1]


STEP_ORDER = list(ChatStep)


class CallPhase(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    ENDED = "ended"

    @property
    def can_start(self) -> bool:
        return self in (CallPhase.IDLE, CallPhase.ENDED)
