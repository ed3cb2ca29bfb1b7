"""Freight label classification and normalisation."""

import re
from dataclasses import dataclass

from trackdash.config import settings
from trackdash.status import fold

PRIORITY_MARKER = "priorit"

# Marketplace freight labels as they appear in spreadsheets, folded.
MERCADO_LIVRE_LABELS = frozenset(
    {
        "encomenda normal",
        "normal ao endereco",
        "retirada normal na agencia",
        "retirada prioritaria na agencia",
    }
)
SHOPEE_LABELS = frozenset({"shopee xpress", "retirada pelo comprador"})

UNKNOWN_CARRIER = "Desconhecida"
AWAITING_CARRIER = "Aguardando"

_CARRIER_NOISE = (
    re.compile(r"\(frete fixo\)"),
    re.compile(r"- standard"),
    re.compile(r"\bstandard\b"),
    re.compile(r"\."),
)


@dataclass(frozen=True)
class Classification:
    channel_managed: bool


class CarrierClassifier:
    """Decides whether an order's freight label is handled by the sales channel."""

    def __init__(self, channel_labels=None):
        labels = settings.channel_freight_labels if channel_labels is None else channel_labels
        self.channel_labels = frozenset(fold(label) for label in labels)

    def is_channel_managed(self, freight_type: str | None) -> bool:
        label = fold(freight_type)
        return label in self.channel_labels or PRIORITY_MARKER in label

    def classify(self, freight_type: str | None) -> Classification:
        return Classification(channel_managed=self.is_channel_managed(freight_type))


def normalise_freight_type(raw: str | None) -> str:
    """Collapse marketplace freight labels into their channel label."""
    label = fold(raw)
    if not label:
        return AWAITING_CARRIER
    if label in MERCADO_LIVRE_LABELS or PRIORITY_MARKER in label:
        return "ColetasME2"
    if label in SHOPEE_LABELS:
        return "Shopee Xpress"
    return str(raw).strip()


def normalise_carrier_name(name: str | None) -> str:
    """Normalise a carrier name for grouping.

    "LMS Logistica (Frete Fixo)" -> "Lms Logistica"
    "Jamef Jamef Standard" -> "Jamef"
    """
    if not name or not name.strip():
        return UNKNOWN_CARRIER

    normalised = name.lower()
    for pattern in _CARRIER_NOISE:
        normalised = pattern.sub("", normalised)

    words = [word[:1].upper() + word[1:] for word in normalised.split()]
    unique = [word for index, word in enumerate(words) if index == 0 or word != words[index - 1]]
    return " ".join(unique) or UNKNOWN_CARRIER
