"""Payment/credit detection for ledger entries.

Aggregators do not reliably tag card payments, so entries are classified by
their description. The vocabulary is data: extra phrases can be stored per
institution in ``payment_indicators`` without touching cycle logic.
"""

from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from models import PaymentIndicator


DEFAULT_PAYMENT_INDICATORS: tuple[str, ...] = (
    "payment",
    "pymt",
    "autopay",
    "ach payment",
    "online payment",
    "mobile payment",
    "phone payment",
    "web payment",
    "bank payment",
    "electronic payment",
)


class PaymentClassifier:
    def __init__(self, indicators: Iterable[str] = DEFAULT_PAYMENT_INDICATORS) -> None:
        cleaned = {
            phrase.strip().lower() for phrase in indicators if phrase and phrase.strip()
        }
        self.indicators: tuple[str, ...] = tuple(sorted(cleaned))

    def is_payment(self, name: Optional[str]) -> bool:
        if not name:
            return False
        lowered = str(name).lower()
        return any(phrase in lowered for phrase in self.indicators)

    def is_payment_entry(self, entry) -> bool:
        label = (entry.name or "").strip() or (entry.merchant_name or "")
        return self.is_payment(label)


def is_payment(name: Optional[str]) -> bool:
    return _DEFAULT_CLASSIFIER.is_payment(name)


def classifier_for_institution(
    session: Session, institution_name: Optional[str]
) -> PaymentClassifier:
    stmt = select(PaymentIndicator.phrase)
    if institution_name:
        stmt = stmt.where(
            or_(
                PaymentIndicator.institution_name.is_(None),
                func.lower(PaymentIndicator.institution_name)
                == institution_name.strip().lower(),
            )
        )
    else:
        stmt = stmt.where(PaymentIndicator.institution_name.is_(None))
    extra = session.scalars(stmt).all()
    return PaymentClassifier([*DEFAULT_PAYMENT_INDICATORS, *extra])


_DEFAULT_CLASSIFIER = PaymentClassifier()
