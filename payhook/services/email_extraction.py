"""
Extract structured payment fields from Banregio SPEI notification e-mails.

Extraction runs an ordered table of independent rules. Each rule targets one
or more fields and is only consulted while those fields are still empty, so
the first rule that yields a value wins. Rules come in three stages:

1. markup rules read the HTML tree, where label/value pairs sit in adjacent
   elements and are more reliable than prose matching;
2. text rules run patterns over the normalized body (markup stripped, entities
   unescaped, whitespace collapsed);
3. fallback rules use looser patterns for the tracking key (known SPEI key
   prefixes) and the amount (any currency amount).

Extraction is pure and never raises; fields that cannot be found stay ``None``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

FIELD_NAMES: Tuple[str, ...] = (
    "tracking_key",
    "payer_account",
    "payer_name",
    "payment_concept",
    "reference",
    "applied_at",
    "issuing_institution",
    "amount",
)

_WHITESPACE = re.compile(r"\s+")
_TAG = re.compile(r"<[^>]+>")
_ACCOUNT_TEXT = re.compile(r"^[*\d]{4,}$")
_NAME_TEXT = re.compile(r"^[A-ZÁÉÍÓÚÜÑ][A-ZÁÉÍÓÚÜÑ .,]+$", re.IGNORECASE)
_TRACKING_KEY_TEXT = re.compile(r"^[A-Z0-9]{6,}$", re.IGNORECASE)
_TRACKING_KEY_LABEL = re.compile(r"^clave de rastreo:?$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedBody:
    """Raw body plus its HTML tree and normalized text."""

    raw: str
    soup: Optional[BeautifulSoup]
    text: str

    @classmethod
    def from_raw(cls, raw: str) -> "ParsedBody":
        if "<" not in raw:
            return cls(raw=raw, soup=None, text=_collapse(raw))
        try:
            soup = BeautifulSoup(raw, "html.parser")
        except ParserRejectedMarkup:
            return cls(raw=raw, soup=None, text=_collapse(_TAG.sub(" ", raw)))
        return cls(raw=raw, soup=soup, text=_collapse(soup.get_text(" ")))


@dataclass(frozen=True)
class ExtractionRule:
    """One independent attempt at populating ``fields`` from a parsed body."""

    name: str
    fields: Tuple[str, ...]
    find: Callable[[ParsedBody], Optional[Tuple[str, ...]]]


@dataclass(frozen=True)
class PaymentFields:
    """Outcome of extraction; any field may be ``None``."""

    tracking_key: Optional[str] = None
    payer_account: Optional[str] = None
    payer_name: Optional[str] = None
    payment_concept: Optional[str] = None
    reference: Optional[str] = None
    applied_at: Optional[str] = None
    issuing_institution: Optional[str] = None
    amount: Optional[str] = None
    sources: Dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def missing_fields(self) -> List[str]:
        return [name for name in FIELD_NAMES if getattr(self, name) is None]


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text.replace("\xa0", " ")).strip()


def _pattern_rule(name: str, fields: Sequence[str], pattern: str, flags: int = 0) -> ExtractionRule:
    compiled = re.compile(pattern, flags)

    def find(body: ParsedBody) -> Optional[Tuple[str, ...]]:
        match = compiled.search(body.text)
        if match is None:
            return None
        return tuple(group or "" for group in match.groups())

    return ExtractionRule(name=name, fields=tuple(fields), find=find)


def _element_text(element) -> str:
    return _collapse(element.get_text(" "))


def _markup_tracking_key(body: ParsedBody) -> Optional[Tuple[str, ...]]:
    if body.soup is None:
        return None
    for label in body.soup.find_all(["p", "td", "th", "span", "div", "b", "strong"]):
        if not _TRACKING_KEY_LABEL.match(_element_text(label)):
            continue
        candidate = label.find_next_sibling()
        if candidate is None and label.parent is not None:
            candidate = label.parent.find_next_sibling()
        if candidate is None:
            continue
        value = _element_text(candidate)
        if _TRACKING_KEY_TEXT.match(value):
            return (value,)
    return None


def _markup_account_pair(body: ParsedBody) -> Optional[Tuple[str, ...]]:
    if body.soup is None:
        return None
    for paragraph in body.soup.find_all("p"):
        account = _element_text(paragraph)
        if not _ACCOUNT_TEXT.match(account):
            continue
        sibling = paragraph.find_next_sibling()
        if sibling is None or sibling.name != "p":
            continue
        name = _element_text(sibling)
        if _NAME_TEXT.match(name):
            return (account, name.rstrip(" ,."))
    return None


MARKUP_RULES: Tuple[ExtractionRule, ...] = (
    ExtractionRule(
        name="markup.account_pair",
        fields=("payer_account", "payer_name"),
        find=_markup_account_pair,
    ),
    ExtractionRule(
        name="markup.tracking_key",
        fields=("tracking_key",),
        find=_markup_tracking_key,
    ),
)

TEXT_RULES: Tuple[ExtractionRule, ...] = (
    _pattern_rule(
        "text.account_pair",
        ("payer_account", "payer_name"),
        r"Cuenta origen:?\s+([*\d]+)\s+([A-ZÁÉÍÓÚÜÑ .,]+?)"
        r"(?=\s+Cuenta destino|\s+Cantidad|\s+Clave de rastreo|$)",
        re.IGNORECASE,
    ),
    _pattern_rule(
        "text.tracking_key",
        ("tracking_key",),
        r"Clave de rastreo:?\s+([A-Z0-9]+)",
        re.IGNORECASE,
    ),
    _pattern_rule(
        "text.payment_concept",
        ("payment_concept",),
        r"Concepto de pago:?\s+(.+?)(?=\s+Referencia\b|$)",
        re.IGNORECASE,
    ),
    _pattern_rule(
        "text.reference",
        ("reference",),
        r"Referencia:?\s+(\d+)",
        re.IGNORECASE,
    ),
    _pattern_rule(
        "text.applied_at",
        ("applied_at",),
        r"Fecha de aplicaci[oó]n:?\s+(\d{2}/\d{2}/\d{4}\s+\d{2}:\d{2}:\d{2})",
        re.IGNORECASE,
    ),
    _pattern_rule(
        "text.issuing_institution",
        ("issuing_institution",),
        r"(?i:Instituci[oó]n emisora):?\s+(\S+(?:\s+\S+)*?)(?=\s+[A-Z][a-z]|$)",
    ),
    _pattern_rule(
        "text.amount",
        ("amount",),
        r"Cantidad:?\s+\$\s?([\d,]+\.\d{2})",
        re.IGNORECASE,
    ),
)

FALLBACK_RULES: Tuple[ExtractionRule, ...] = (
    _pattern_rule(
        "fallback.tracking_key_spin", ("tracking_key",), r"\b(SPIN\w+)", re.IGNORECASE
    ),
    _pattern_rule(
        "fallback.tracking_key_mban", ("tracking_key",), r"\b(MBAN\w+)", re.IGNORECASE
    ),
    _pattern_rule("fallback.amount_currency", ("amount",), r"\$\s?([\d,]+\.\d{2})"),
)

DEFAULT_RULES: Tuple[ExtractionRule, ...] = MARKUP_RULES + TEXT_RULES + FALLBACK_RULES


def _normalize(field_name: str, value: str) -> Optional[str]:
    value = _collapse(value)
    if field_name == "amount":
        value = value.replace(",", "")
    elif field_name == "payer_name":
        value = value.rstrip(" ,.")
    return value or None


class PaymentEmailExtractor:
    """Run the rule table over a message body."""

    def __init__(self, rules: Iterable[ExtractionRule] = DEFAULT_RULES) -> None:
        self._rules: Tuple[ExtractionRule, ...] = tuple(rules)

    def extract(self, body: Optional[str]) -> PaymentFields:
        if not body or not body.strip():
            return PaymentFields()

        parsed = ParsedBody.from_raw(body)
        values: Dict[str, str] = {}
        sources: Dict[str, str] = {}
        for rule in self._rules:
            if all(name in values for name in rule.fields):
                continue
            found = rule.find(parsed)
            if not found:
                continue
            for name, raw_value in zip(rule.fields, found):
                if name in values:
                    continue
                value = _normalize(name, raw_value)
                if value:
                    values[name] = value
                    sources[name] = rule.name

        return PaymentFields(**values, sources=sources)


def extract_payment_fields(body: Optional[str]) -> PaymentFields:
    """Module-level shortcut using the default rule table."""
    return PaymentEmailExtractor().extract(body)


__all__ = [
    "DEFAULT_RULES",
    "ExtractionRule",
    "FALLBACK_RULES",
    "MARKUP_RULES",
    "ParsedBody",
    "PaymentEmailExtractor",
    "PaymentFields",
    "TEXT_RULES",
    "extract_payment_fields",
]
