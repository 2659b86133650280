"""Regex scanning of raw document text for Irish VAT amounts.

Used by the normalizer when the model's JSON answer is unusable, and by the
legacy text engine. Each line is scanned for three kinds of evidence, in
order of trust:

* labeled totals: ``Total Amount VAT: €111.36``, ``Total VAT €23.00``
* rate breakdown lines: ``VAT @ 23% €109.85``, ``VAT STD23 €109.85``
* unlabeled euro amounts on a line that mentions VAT or tax

A zero-rate marker (``(0%)``, ``Zero-rated``, ``VAT NIL``) in the window
before an amount forces that entry to exactly 0.00.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum

from payvat.vat.number_parsing import parse_amount

NUM = r'([0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]+)?|[0-9]+(?:\.[0-9]+)?)'

VERBATIM_LABEL = re.compile(r'total\s+amount\s+vat', re.IGNORECASE)

LABELED_TOTAL = re.compile(
    r'(total\s+amount\s+vat|total\s+vat\s+amount|total\s+vat|vat\s+total|vat\s+amount|total\s+tax)'
    r'(?:\s*@?\s*\(?\s*\d{1,2}(?:\.\d+)?\s*%\s*\)?)?'
    r'\s*[:\-]?\s*€?\s*' + NUM,
    re.IGNORECASE,
)

RATE_BREAKDOWN = re.compile(
    r'\b(?:vat|tax)\s*(?:@\s*)?\(?\s*(\d{1,2}(?:\.\d+)?)\s*%\s*\)?\s*[:\-]?\s*€?\s*' + NUM,
    re.IGNORECASE,
)

RATE_CODE_BREAKDOWN = re.compile(
    r'\bvat\s+(std23|std|red13\.5|red|tou9|tou|min|nil|zero)\b\s*[:\-]?\s*€?\s*' + NUM,
    re.IGNORECASE,
)

EURO_AMOUNT = re.compile(r'€\s*' + NUM)

VAT_MENTION = re.compile(r'\b(?:vat|tax)\b|cáin\s*bhreisluacha', re.IGNORECASE)

ZERO_RATE = re.compile(
    r'\(\s*0(?:\.0+)?\s*%\s*\)|@\s*0(?:\.0+)?\s*%|zero[\s-]*rated|zero\s+vat|\bvat\s+(?:nil|zero)\b',
    re.IGNORECASE,
)

# Lines describing gross or net figures are not VAT amounts.
INCL_EXCL = re.compile(r'\b(?:incl|excl|including|excluding|inclusive|exclusive|ex\.?)\b', re.IGNORECASE)

RATE_CODES: dict[str, float | None] = {
    "std23": 23.0,
    "std": 23.0,
    "red13.5": 13.5,
    "red": 13.5,
    "tou9": 9.0,
    "tou": 9.0,
    "nil": 0.0,
    "zero": 0.0,
    "min": None,
}

ZERO_WINDOW = 40


class VatLineKind(StrEnum):
    LABELED = "labeled"
    BREAKDOWN = "breakdown"
    UNLABELED = "unlabeled"


@dataclass
class VatLine:
    kind: VatLineKind
    amount: float
    rate: float | None = None
    zero_rated: bool = False
    source: str = ""


@dataclass
class VatScan:
    lines: list[VatLine] = field(default_factory=list)
    verbatim_label: bool = False
    zero_rated: bool = False

    def _of(self, kind: VatLineKind) -> list[float]:
        return [line.amount for line in self.lines if line.kind == kind]

    @property
    def labeled_totals(self) -> list[float]:
        return self._of(VatLineKind.LABELED)

    @property
    def breakdown(self) -> list[float]:
        return self._of(VatLineKind.BREAKDOWN)

    @property
    def unlabeled(self) -> list[float]:
        return self._of(VatLineKind.UNLABELED)

    @property
    def rates(self) -> list[float]:
        return [line.rate for line in self.lines if line.rate is not None]

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def best_amount(self) -> tuple[float, VatLineKind] | None:
        """Pick the single most trustworthy VAT figure.

        Labeled total, then the sum of the rate breakdown, then the largest
        unlabeled euro amount.
        """
        labeled = [line for line in self.lines if line.kind == VatLineKind.LABELED]
        if labeled:
            verbatim = [line for line in labeled if VERBATIM_LABEL.search(line.source)]
            return (verbatim or labeled)[0].amount, VatLineKind.LABELED
        breakdown = self.breakdown
        if breakdown:
            return round(sum(breakdown), 2), VatLineKind.BREAKDOWN
        unlabeled = self.unlabeled
        if unlabeled:
            return max(unlabeled), VatLineKind.UNLABELED
        return None


def _zero_rated(line: str, window_start: int, amount_end: int) -> bool:
    start = max(window_start, amount_end - ZERO_WINDOW - 20)
    return bool(ZERO_RATE.search(line[start:amount_end]))


def _amount(raw: str) -> float | None:
    try:
        return parse_amount(raw)
    except ValueError:
        return None


def scan_vat_amounts(text: str) -> VatScan:
    """Scan ``text`` line by line and collect VAT evidence."""
    scan = VatScan()
    if not text:
        return scan

    scan.verbatim_label = bool(VERBATIM_LABEL.search(text))
    scan.zero_rated = bool(ZERO_RATE.search(text))

    for line in text.splitlines():
        if not line.strip():
            continue
        consumed: list[tuple[int, int]] = []
        cursor = 0

        def overlaps(span: tuple[int, int]) -> bool:
            return any(span[0] < end and start < span[1] for start, end in consumed)

        def record(kind: VatLineKind, match: re.Match, raw: str, rate: float | None) -> None:
            nonlocal cursor
            value = _amount(raw)
            if value is None:
                return
            zero = rate == 0.0 or _zero_rated(line, cursor, match.end())
            scan.lines.append(VatLine(
                kind=kind,
                amount=0.0 if zero else value,
                rate=0.0 if zero else rate,
                zero_rated=zero,
                source=match.group(0),
            ))
            consumed.append(match.span())
            cursor = match.end()

        for match in LABELED_TOTAL.finditer(line):
            record(VatLineKind.LABELED, match, match.group(2), None)

        for match in RATE_BREAKDOWN.finditer(line):
            if not overlaps(match.span()):
                record(VatLineKind.BREAKDOWN, match, match.group(2), float(match.group(1)))

        for match in RATE_CODE_BREAKDOWN.finditer(line):
            if not overlaps(match.span()):
                record(VatLineKind.BREAKDOWN, match, match.group(2), RATE_CODES[match.group(1).lower()])

        if VAT_MENTION.search(line) and not INCL_EXCL.search(line):
            for match in EURO_AMOUNT.finditer(line):
                if not overlaps(match.span()):
                    record(VatLineKind.UNLABELED, match, match.group(1), None)

        if not consumed and VAT_MENTION.search(line) and ZERO_RATE.search(line):
            scan.lines.append(VatLine(
                kind=VatLineKind.BREAKDOWN, amount=0.0, rate=0.0, zero_rated=True, source=line.strip(),
            ))

    return scan
