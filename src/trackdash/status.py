"""Keyword based status matching."""

import unicodedata
from dataclasses import dataclass

from trackdash.db.models import OrderStatus


def fold(text: object) -> str:
    """Lower-case and strip accents so "Prioritária" matches "prioritaria"."""
    if text is None or text == "":
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


@dataclass(frozen=True)
class StatusRule:
    """Maps any of ``keywords`` (folded substrings) to ``status``."""

    status: OrderStatus
    keywords: tuple[str, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "StatusRule":
        return cls(
            status=OrderStatus(data["status"]),
            keywords=tuple(fold(keyword) for keyword in data.get("keywords", [])),
        )

    def matches(self, folded_text: str) -> bool:
        return any(keyword in folded_text for keyword in self.keywords)


def match_status(text: str | None, rules) -> OrderStatus | None:
    """Return the status of the first rule matching ``text``, or None."""
    folded = fold(text)
    if not folded:
        return None
    for rule in rules:
        if rule.matches(folded):
            return rule.status
    return None


# Vocabulary used by spreadsheet and storefront imports. Order matters.
INGESTION_RULES: tuple[StatusRule, ...] = (
    StatusRule(OrderStatus.DELIVERED, ("entregue", "concluido", "delivered", "finalizado")),
    StatusRule(OrderStatus.CANCELED, ("cancelado", "canceled", "cancelled")),
    StatusRule(OrderStatus.RETURNED, ("devolvido", "returned")),
    StatusRule(OrderStatus.FAILURE, ("falha", "roubo", "extravio")),
    StatusRule(OrderStatus.SHIPPED, ("transito", "enviado")),
)


def map_ingestion_status(raw: str | None) -> OrderStatus:
    """Map a free-text status from an import to the canonical enumeration."""
    if raw is None:
        return OrderStatus.PENDING
    candidate = str(raw).strip().upper()
    if candidate in OrderStatus.__members__:
        return OrderStatus[candidate]
    return match_status(str(raw), INGESTION_RULES) or OrderStatus.PENDING
