"""Fixed package catalog and contact channels offered by the guided flow."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class Package:
    id: str
    label: str
    minutes: int
    price: float

    @property
    def seconds(self) -> int:
        return self.minutes * 60


PACKAGES = (
    Package(id="p3", label="3 minutos", minutes=3, price=9.9),
    Package(id="p5", label="5 minutos", minutes=5, price=14.9),
    Package(id="p10", label="10 minutos", minutes=10, price=24.9),
)

_BY_ID = {pkg.id: pkg for pkg in PACKAGES}


def find_package(package_id: str) -> Optional[Package]:
    """Return the catalog package with this id, or None if it is not offered."""
    return _BY_ID.get(package_id)


class ContactChannel(Enum):
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    EMAIL = "email"

    @property
    def label(self) -> str:
        return CHANNEL_LABELS[self]

    @property
    def input_label(self) -> str:
        if self is ContactChannel.EMAIL:
            return "Digite seu e-mail"
        return "Digite seu número com DDD"

    @property
    def placeholder(self) -> str:
        if self is ContactChannel.EMAIL:
            return "seuemail@exemplo.com"
        return "(11) 99999-9999"


CHANNEL_LABELS = {
    ContactChannel.WHATSAPP: "WhatsApp",
    ContactChannel.TELEGRAM: "Telegram",
    ContactChannel.EMAIL: "E-mail",
}


def parse_channel(raw: str) -> Optional[ContactChannel]:
    try:
        return ContactChannel((raw or "").strip().lower())
    except ValueError:
        return None


def catalog_payload() -> list[dict]:
    """Serializable view of the catalog for the page renderer."""
    return [
        {
            "id": pkg.id,
            "label": pkg.label,
            "minutes": pkg.minutes,
            "price": pkg.price,
            "seconds": pkg.seconds,
        }
        for pkg in PACKAGES
    ]
