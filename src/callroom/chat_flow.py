import asyncio
import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, Optional

from callroom.catalog import ContactChannel, Package, find_package
from callroom.prompts import HANDOFF_TOAST_DESCRIPTION, HANDOFF_TOAST_TITLE
from callroom.session import ChatState
from callroom.states import ChatStep

logger = logging.getLogger(__name__)

COMPOSE_DELAY_RANGE = (0.7, 0.8)

# Forward moves driven by user events; composing steps advance via ChatStep.next().
TRANSITIONS = {
    ChatStep.INTRO: {ChatStep.MINUTES_CONFIRMED},
    ChatStep.MINUTES: {ChatStep.MINUTES_CONFIRMED},
    ChatStep.MINUTES_CONFIRMED: {ChatStep.CONTACT_TYPING},
    ChatStep.CONTACT_TYPING: {ChatStep.CONTACT},
    ChatStep.CONTACT: {ChatStep.CONTACT_CONFIRMED, ChatStep.MINUTES},
    ChatStep.CONTACT_CONFIRMED: {ChatStep.SUMMARY_TYPING},
    ChatStep.SUMMARY_TYPING: {ChatStep.SUMMARY},
    ChatStep.SUMMARY: {ChatStep.FINISHED, ChatStep.CONTACT},
    ChatStep.FINISHED: {ChatStep.MINUTES},
}


class FlowInvariantError(RuntimeError):
    """The chat reached a step its preconditions should have made unreachable."""


class EventKind(Enum):
    SELECT_PACKAGE = "select_package"
    SELECT_CHANNEL = "select_channel"
    INPUT_CONTACT = "input_contact"
    CONTINUE = "continue"
    BACK = "back"
    GENERATE = "generate"
    CREATE_ANOTHER = "create_another"
    COMPOSED = "composed"


@dataclass(frozen=True)
class ChatEvent:
    kind: EventKind
    package_id: str = ""
    channel: Optional[ContactChannel] = None
    value: str = ""
    origin: str = ""


@dataclass
class Action:
    compose: bool = False
    open_link: str = ""
    notify: dict = field(default_factory=dict)


@dataclass
class Outcome:
    state: ChatState
    action: Action = field(default_factory=Action)


def build_handoff_link(origin: str, package: Package) -> str:
    return f"{origin.rstrip('/')}/?seconds={package.seconds}"


def can_continue(chat: ChatState) -> bool:
    return chat.channel is not None and bool(chat.contact_value.strip())


def _enter(chat: ChatState, step: ChatStep, **changes) -> ChatState:
    """Move to ``step``; composing steps raise the typing flag on entry."""
    if step not in TRANSITIONS.get(chat.step, set()):
        raise FlowInvariantError(f"{chat.step.value} -> {step.value} is not a valid move")
    return replace(chat, step=step, composing=step.is_composing, **changes)


class ChatFlowController:
    """Pure transition function for the guided package/contact/summary chat.

    ``process`` never mutates its input; it returns the next state and the
    side effects the runner must carry out (a pacing delay, a link to open,
    a toast).
    """

    def valid_transitions(self, step: ChatStep) -> set[ChatStep]:
        return TRANSITIONS.get(step, set())

    def process(self, chat: ChatState, event: ChatEvent) -> Outcome:
        if event.kind == EventKind.COMPOSED:
            return self._handle_composed(chat)
        handler = getattr(self, f"_handle_{chat.step.value}", None)
        if handler is None:
            return self._ignore(chat, event)
        return handler(chat, event)

    def _ignore(self, chat: ChatState, event: ChatEvent) -> Outcome:
        logger.debug("Ignoring %s in step %s", event.kind.value, chat.step.value)
        return Outcome(chat)

    # ── Step handlers ──

    def _handle_composed(self, chat: ChatState) -> Outcome:
        if not chat.step.is_composing:
            return Outcome(chat)
        nxt = _enter(chat, chat.step.next())
        return Outcome(nxt, Action(compose=nxt.composing))

    def _handle_packages(self, chat: ChatState, event: ChatEvent) -> Outcome:
        if event.kind != EventKind.SELECT_PACKAGE:
            return self._ignore(chat, event)
        package = find_package(event.package_id)
        if package is None:
            logger.warning("Rejected unknown package id %r", event.package_id)
            return Outcome(chat)
        nxt = _enter(chat, ChatStep.MINUTES_CONFIRMED, package=package)
        return Outcome(nxt, Action(compose=True))

    _handle_intro = _handle_packages
    _handle_minutes = _handle_packages

    def _handle_contact(self, chat: ChatState, event: ChatEvent) -> Outcome:
        if chat.package is None:
            raise FlowInvariantError("contact step reached without a package")

        if event.kind == EventKind.SELECT_CHANNEL and event.channel is not None:
            return Outcome(replace(chat, channel=event.channel))

        if event.kind == EventKind.INPUT_CONTACT:
            if chat.channel is None:
                return self._ignore(chat, event)
            return Outcome(replace(chat, contact_value=event.value))

        if event.kind == EventKind.CONTINUE:
            if not can_continue(chat):
                return self._ignore(chat, event)
            return Outcome(_enter(chat, ChatStep.CONTACT_CONFIRMED), Action(compose=True))

        if event.kind == EventKind.BACK:
            return Outcome(_enter(chat, ChatStep.MINUTES, channel=None, contact_value=""))

        return self._ignore(chat, event)

    def _handle_summary(self, chat: ChatState, event: ChatEvent) -> Outcome:
        if event.kind == EventKind.BACK:
            return Outcome(_enter(chat, ChatStep.CONTACT))

        if event.kind == EventKind.GENERATE:
            if chat.package is None:
                raise FlowInvariantError("generate requested without a selected package")
            link = build_handoff_link(event.origin, chat.package)
            logger.info("Hand-off link generated for %s: %s", chat.package.id, link)
            return Outcome(
                _enter(chat, ChatStep.FINISHED, handoff_link=link),
                Action(
                    open_link=link,
                    notify={
                        "title": HANDOFF_TOAST_TITLE,
                        "description": HANDOFF_TOAST_DESCRIPTION,
                    },
                ),
            )

        return self._ignore(chat, event)

    def _handle_finished(self, chat: ChatState, event: ChatEvent) -> Outcome:
        if event.kind != EventKind.CREATE_ANOTHER:
            return self._ignore(chat, event)
        return Outcome(
            _enter(chat, ChatStep.MINUTES, package=None, channel=None, contact_value="")
        )


class ChatFlowRunner:
    """Drive one ``ChatState`` through the controller on the event loop.

    Composing steps are paced with a short randomized sleep before the next
    machine-authored message; the sleep feeds a ``composed`` event back in.
    """

    def __init__(
        self,
        open_link: Callable[[str], Awaitable[None]],
        on_change: Optional[Callable[[ChatState], None]] = None,
        on_notify: Optional[Callable[[dict], None]] = None,
        controller: Optional[ChatFlowController] = None,
        delay_range: tuple[float, float] = COMPOSE_DELAY_RANGE,
    ):
        self.state = ChatState()
        self.controller = controller or ChatFlowController()
        self.delay_range = delay_range
        self._open_link = open_link
        self._on_change = on_change
        self._on_notify = on_notify
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    @property
    def composing(self) -> bool:
        return self.state.composing

    async def dispatch(self, event: ChatEvent) -> ChatState:
        if self._closed:
            return self.state
        before = self.state
        outcome = self.controller.process(before, event)
        self.state = outcome.state
        if outcome.state != before and self._on_change:
            self._on_change(self.state)

        action = outcome.action
        if action.compose:
            self._schedule_compose()
        if action.open_link:
            await self._open_link(action.open_link)
        if action.notify and self._on_notify:
            self._on_notify(action.notify)
        return self.state

    def _schedule_compose(self) -> None:
        task = asyncio.create_task(self._compose_delay())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _compose_delay(self) -> None:
        await asyncio.sleep(random.uniform(*self.delay_range))
        await self.dispatch(ChatEvent(EventKind.COMPOSED))

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
