from dataclasses import dataclass
from typing import Optional

from callroom.catalog import ContactChannel, Package
from callroom.states import CallPhase, ChatStep


@dataclass(frozen=True)
class ChatState:
    step: ChatStep = ChatStep.INTRO

    # From package selection
    package: Optional[Package] = None

    # From contact capture
    channel: Optional[ContactChannel] = None
    contact_value: str = ""

    # Set while a machine-authored message is being "typed"
    composing: bool = False

    # Last hand-off link generated from the summary
    handoff_link: str = ""

    def to_dict(self) -> dict:
        return {
            "step": self.step.value,
            "package_id": self.package.id if self.package else None,
            "channel": self.channel.value if self.channel else None,
            "contact_value": self.contact_value,
            "composing": self.composing,
            "handoff_link": self.handoff_link,
        }


@dataclass
class CallSessionState:
    phase: CallPhase = CallPhase.IDLE
    elapsed_seconds: int = 0

    # Snapshot of the resolved limit, taken when the session starts
    duration_limit_seconds: int = 0

    mic_enabled: bool = True
    camera_enabled: bool = True
    permission_error: Optional[str] = None

    # Observability only; never drives a transition
    end_reason: Optional[str] = None

    @property
    def in_call(self) -> bool:
        return self.phase is CallPhase.ACTIVE

    @property
    def connecting(self) -> bool:
        return self.phase is CallPhase.CONNECTING

    @property
    def remaining_seconds(self) -> int:
        if not self.in_call:
            return 0
        return max(self.duration_limit_seconds - self.elapsed_seconds, 0)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "in_call": self.in_call,
            "connecting": self.connecting,
            "elapsed_seconds": self.elapsed_seconds,
            "duration_limit_seconds": self.duration_limit_seconds,
            "remaining_seconds": self.remaining_seconds,
            "mic_enabled": self.mic_enabled,
            "camera_enabled": self.camera_enabled,
            "permission_error": self.permission_error,
        }
