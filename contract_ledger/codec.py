"""
Tag Codec Module

Encodes ledger events to ``[NAME:field1:field2:...]`` substrings and decodes
them back out of free-text annotations. Tags may appear in any order and be
interleaved with prose. Decoding never raises: unknown or malformed tags are
skipped, unparsable numbers become zero, and for kinds that have more than
one payload shape the newer shape is tried before the legacy one.
"""

from datetime import date
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type
import logging
import re

from .events import (
    LedgerEvent, PartialPaid, AdvanceSubinstallment, InterestOnlyPaid,
    HistoricalInterestReceived, DailyPenalty, OverdueConfig, RenewalFeeInstallment,
    Amortization, Marker, OriginalTerm, ExtraInstallments,
    PenaltyKind, MarkerKind, OriginalTermKey
)
from .money import parse_decimal, parse_int

logger = logging.getLogger("contract_ledger.codec")

TAG_PATTERN = re.compile(r'\[([A-Z][A-Z_]*)((?::[^\[\]:]*)*)\]')

PARTIAL_PAID = "PARTIAL_PAID"
ADVANCE_SUBPARCELA = "ADVANCE_SUBPARCELA"
ADVANCE_SUBPARCELA_PAID = "ADVANCE_SUBPARCELA_PAID"
INTEREST_ONLY_PAID = "INTEREST_ONLY_PAID"
HISTORICAL_INTEREST = "HISTORICAL_INTEREST"
HISTORICAL_INTEREST_RECEIVED = "HISTORICAL_INTEREST_RECEIVED"
DAILY_PENALTY = "DAILY_PENALTY"
OVERDUE_CONFIG = "OVERDUE_CONFIG"
RENEWAL_FEE_INSTALLMENT = "RENEWAL_FEE_INSTALLMENT"
AMORTIZATION = "AMORTIZATION"
EXTRA_INSTALLMENTS = "EXTRA_INSTALLMENTS"

EventKey = Tuple


def _num(value) -> str:
    """Render a Decimal in plain notation without losing digits"""
    return format(value, 'f')


def _iso(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


# Decoders: each receives the split field list and returns an event or None

def _decode_partial_paid(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) != 2:
        return None
    return PartialPaid(index=parse_int(fields[0]), amount=parse_decimal(fields[1]))


def _decode_advance(paid: bool) -> Callable[[List[str]], Optional[LedgerEvent]]:
    def decoder(fields: List[str]) -> Optional[LedgerEvent]:
        if len(fields) == 4:
            index_raw, amount_raw, date_raw, unique_id = fields
        elif len(fields) == 3:
            # Legacy shape without a unique id
            index_raw, amount_raw, date_raw = fields
            unique_id = ""
        else:
            return None
        index = parse_int(index_raw)
        return AdvanceSubinstallment(
            original_index=index,
            remaining_amount=parse_decimal(amount_raw),
            due_date=_parse_date(date_raw),
            unique_id=unique_id.strip() or f"{index}-{date_raw.strip()}",
            paid=paid,
        )
    return decoder


def _decode_interest_only_paid(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) != 3:
        return None
    return InterestOnlyPaid(
        index=parse_int(fields[0]),
        amount=parse_decimal(fields[1]),
        paid_on=_parse_date(fields[2]),
    )


def _decode_historical_interest(legacy: bool) -> Callable[[List[str]], Optional[LedgerEvent]]:
    def decoder(fields: List[str]) -> Optional[LedgerEvent]:
        if len(fields) != 1:
            return None
        return HistoricalInterestReceived(amount=parse_decimal(fields[0]), legacy=legacy)
    return decoder


def _decode_daily_penalty(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) != 2:
        return None
    return DailyPenalty(index=parse_int(fields[0]), amount=parse_decimal(fields[1]))


def _decode_overdue_config(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) != 2:
        return None
    try:
        kind = PenaltyKind(fields[0].strip().lower())
    except ValueError:
        return None
    return OverdueConfig(kind=kind, value=parse_decimal(fields[1]))


def _decode_renewal_fee(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) == 3:
        return RenewalFeeInstallment(
            index=parse_int(fields[0]),
            new_value=parse_decimal(fields[1]),
            fee_amount=parse_decimal(fields[2]),
        )
    if len(fields) == 2:
        return RenewalFeeInstallment(index=parse_int(fields[0]), new_value=parse_decimal(fields[1]))
    return None


def _decode_amortization(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) not in (3, 4):
        return None
    return Amortization(
        amount=parse_decimal(fields[0]),
        new_principal=parse_decimal(fields[1]),
        new_total_interest=parse_decimal(fields[2]),
        applied_on=_parse_date(fields[3]) if len(fields) == 4 else None,
    )


def _decode_extra_installments(fields: List[str]) -> Optional[LedgerEvent]:
    if len(fields) != 2:
        return None
    return ExtraInstallments(count=parse_int(fields[0]), added_on=_parse_date(fields[1]))


def _decode_marker(kind: MarkerKind) -> Callable[[List[str]], Optional[LedgerEvent]]:
    def decoder(fields: List[str]) -> Optional[LedgerEvent]:
        return Marker(kind) if not fields else None
    return decoder


def _decode_original_term(key: OriginalTermKey) -> Callable[[List[str]], Optional[LedgerEvent]]:
    def decoder(fields: List[str]) -> Optional[LedgerEvent]:
        if len(fields) != 1:
            return None
        return OriginalTerm(key=key, value=fields[0].strip())
    return decoder


DECODERS: Dict[str, Callable[[List[str]], Optional[LedgerEvent]]] = {
    PARTIAL_PAID: _decode_partial_paid,
    ADVANCE_SUBPARCELA: _decode_advance(paid=False),
    ADVANCE_SUBPARCELA_PAID: _decode_advance(paid=True),
    INTEREST_ONLY_PAID: _decode_interest_only_paid,
    HISTORICAL_INTEREST_RECEIVED: _decode_historical_interest(legacy=False),
    HISTORICAL_INTEREST: _decode_historical_interest(legacy=True),
    DAILY_PENALTY: _decode_daily_penalty,
    OVERDUE_CONFIG: _decode_overdue_config,
    RENEWAL_FEE_INSTALLMENT: _decode_renewal_fee,
    AMORTIZATION: _decode_amortization,
    EXTRA_INSTALLMENTS: _decode_extra_installments,
}
DECODERS.update({kind.value: _decode_marker(kind) for kind in MarkerKind})
DECODERS.update({key.value: _decode_original_term(key) for key in OriginalTermKey})


def decode_tag(name: str, fields: List[str]) -> Optional[LedgerEvent]:
    """Decode a single tag given its name and field list"""
    decoder = DECODERS.get(name)
    if decoder is None:
        return None
    event = decoder(fields)
    if event is None:
        logger.debug(f"Skipping malformed {name} tag with {len(fields)} field(s)")
    return event


def _iter_tags(annotation: Optional[str]) -> Iterator[Tuple[Tuple[int, int], LedgerEvent]]:
    """Yield ``(span, event)`` for every decodable tag in text order"""
    if not annotation:
        return
    for match in TAG_PATTERN.finditer(annotation):
        payload = match.group(2)
        fields = payload[1:].split(':') if payload else []
        event = decode_tag(match.group(1), fields)
        if event is not None:
            yield match.span(), event


def decode(annotation: Optional[str]) -> List[LedgerEvent]:
    """
    Decode every recognised tag of an annotation.

    Args:
        annotation: Free text, possibly None or empty

    Returns:
        Ledger events in the order they appear in the text
    """
    return [event for _, event in _iter_tags(annotation)]


def encode(event: LedgerEvent) -> str:
    """
    Encode a ledger event as its tag substring.

    Raises:
        TypeError: If the object is not a ledger event
    """
    if isinstance(event, PartialPaid):
        return f"[{PARTIAL_PAID}:{event.index}:{_num(event.amount)}]"
    if isinstance(event, AdvanceSubinstallment):
        name = ADVANCE_SUBPARCELA_PAID if event.paid else ADVANCE_SUBPARCELA
        return (f"[{name}:{event.original_index}:{_num(event.remaining_amount)}:"
                f"{_iso(event.due_date)}:{event.unique_id}]")
    if isinstance(event, InterestOnlyPaid):
        return f"[{INTEREST_ONLY_PAID}:{event.index}:{_num(event.amount)}:{_iso(event.paid_on)}]"
    if isinstance(event, HistoricalInterestReceived):
        name = HISTORICAL_INTEREST if event.legacy else HISTORICAL_INTEREST_RECEIVED
        return f"[{name}:{_num(event.amount)}]"
    if isinstance(event, DailyPenalty):
        return f"[{DAILY_PENALTY}:{event.index}:{_num(event.amount)}]"
    if isinstance(event, OverdueConfig):
        return f"[{OVERDUE_CONFIG}:{event.kind.value}:{_num(event.value)}]"
    if isinstance(event, RenewalFeeInstallment):
        if event.fee_amount is None:
            return f"[{RENEWAL_FEE_INSTALLMENT}:{event.index}:{_num(event.new_value)}]"
        return (f"[{RENEWAL_FEE_INSTALLMENT}:{event.index}:{_num(event.new_value)}:"
                f"{_num(event.fee_amount)}]")
    if isinstance(event, Amortization):
        base = (f"[{AMORTIZATION}:{_num(event.amount)}:{_num(event.new_principal)}:"
                f"{_num(event.new_total_interest)}")
        if event.applied_on is None:
            return base + "]"
        return base + f":{_iso(event.applied_on)}]"
    if isinstance(event, Marker):
        return f"[{event.kind.value}]"
    if isinstance(event, OriginalTerm):
        return f"[{event.key.value}:{event.value}]"
    if isinstance(event, ExtraInstallments):
        return f"[{EXTRA_INSTALLMENTS}:{event.count}:{_iso(event.added_on)}]"
    raise TypeError(f"Not a ledger event: {event!r}")


def event_key(event: LedgerEvent) -> Optional[EventKey]:
    """
    Identity under which a later event supersedes an earlier one.

    Returns None for repeatable kinds, which are always appended.
    """
    if isinstance(event, PartialPaid):
        return (PARTIAL_PAID, event.index)
    if isinstance(event, AdvanceSubinstallment):
        # Pending and paid forms share the key so settling renames in place
        return (ADVANCE_SUBPARCELA, event.unique_id)
    if isinstance(event, HistoricalInterestReceived):
        return (HISTORICAL_INTEREST,)
    if isinstance(event, DailyPenalty):
        return (DAILY_PENALTY, event.index)
    if isinstance(event, OverdueConfig):
        return (OVERDUE_CONFIG,)
    if isinstance(event, RenewalFeeInstallment):
        return (RENEWAL_FEE_INSTALLMENT, event.index)
    if isinstance(event, Marker):
        return ("MARKER", event.kind)
    if isinstance(event, OriginalTerm):
        return ("ORIGINAL", event.key)
    return None


def _append(annotation: str, tag: str) -> str:
    if not annotation:
        return tag
    if annotation.endswith("\n"):
        return annotation + tag
    return annotation + "\n" + tag


def _splice(annotation: str, spans: Sequence[Tuple[int, int]], replacement: Optional[str]) -> str:
    """
    Remove ``spans`` from the text, putting ``replacement`` where the first
    one was. A tag that occupied a whole line takes its line break with it.
    """
    pieces = []
    cursor = 0
    for position, (start, end) in enumerate(spans):
        pieces.append(annotation[cursor:start])
        if position == 0 and replacement is not None:
            pieces.append(replacement)
        elif end < len(annotation) and annotation[end] == "\n" and (
                start == 0 or annotation[start - 1] == "\n"):
            end += 1
        cursor = end
    pieces.append(annotation[cursor:])
    return "".join(pieces).rstrip("\n")


def upsert(annotation: Optional[str], event: LedgerEvent) -> str:
    """
    Write an event into an annotation, superseding same-key tags.

    Every existing tag with the same key is removed and the new tag takes the
    place of the first one; when none exists the tag is appended on its own
    line. Repeatable kinds are always appended.
    """
    annotation = annotation or ""
    tag = encode(event)
    key = event_key(event)
    if key is None:
        return _append(annotation, tag)

    spans = [span for span, existing in _iter_tags(annotation) if event_key(existing) == key]
    if not spans:
        return _append(annotation, tag)
    return _splice(annotation, spans, tag)


def remove(annotation: Optional[str], predicate: Callable[[LedgerEvent], bool]) -> str:
    """Remove every tag whose decoded event satisfies ``predicate``"""
    annotation = annotation or ""
    spans = [span for span, event in _iter_tags(annotation) if predicate(event)]
    if not spans:
        return annotation
    return _splice(annotation, spans, None)


def remove_kinds(annotation: Optional[str], *kinds: Type) -> str:
    """Remove every tag decoding to one of the given event classes"""
    return remove(annotation, lambda event: isinstance(event, kinds))


def strip_tags(annotation: Optional[str]) -> str:
    """
    Return only the prose of an annotation, for display and outgoing messages.

    Recognised tags are removed and runs of blank lines collapsed.
    """
    prose = remove(annotation, lambda event: True)
    prose = re.sub(r'[ \t]+\n', '\n', prose)
    prose = re.sub(r'\n{3,}', '\n\n', prose)
    return prose.strip()
