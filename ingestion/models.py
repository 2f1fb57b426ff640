"""
Filing data model shared by fetchers, parsers, storage and the pipeline.
Plain dataclasses - no IO.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from typing import Dict, Any, List, Optional


NON_DERIVATIVE = 'non_derivative'
DERIVATIVE = 'derivative'


@dataclass(frozen=True)
class FilingReference:
    """One filing discovered from a feed (or named directly by accession number)."""
    accession_number: str
    form_type: str
    filing_date: Optional[date]
    document_url: Optional[str] = None
    cik: Optional[str] = None
    company_name: Optional[str] = None


@dataclass
class Issuer:
    cik: Optional[str] = None
    name: Optional[str] = None
    trading_symbol: Optional[str] = None


@dataclass
class ReportingOwner:
    """Filer/owner block with relationship flags."""
    cik: Optional[str] = None
    name: Optional[str] = None
    is_director: bool = False
    is_officer: bool = False
    is_ten_percent_owner: bool = False
    is_other: bool = False
    officer_title: Optional[str] = None
    other_text: Optional[str] = None

    @property
    def owner_type(self) -> str:
        if self.is_director:
            return 'Director'
        if self.is_officer:
            return 'Officer'
        if self.is_ten_percent_owner:
            return '10% Owner'
        if self.is_other:
            return 'Other'
        return 'Unknown'


@dataclass
class Transaction:
    """
    One row of Table I (non-derivative) or Table II (derivative).

    The field set is the same whether the row came from structured XML or a
    rendered HTML table, so consumers never need to know the encoding.
    """
    table: str
    security_title: Optional[str] = None
    transaction_date: Optional[date] = None
    deemed_execution_date: Optional[date] = None
    transaction_code: Optional[str] = None
    equity_swap_involved: bool = False
    shares: Optional[float] = None
    acquired_disposed_code: Optional[str] = None
    price_per_share: Optional[float] = None
    shares_owned_following: Optional[float] = None
    direct_or_indirect: Optional[str] = None
    nature_of_ownership: Optional[str] = None
    footnote_ids: List[str] = field(default_factory=list)
    # Table II only
    conversion_or_exercise_price: Optional[float] = None
    exercise_date: Optional[date] = None
    expiration_date: Optional[date] = None
    underlying_security_title: Optional[str] = None
    underlying_security_shares: Optional[float] = None
    # True for holdings rows (forms 3/5) that report a position without a trade
    is_holding: bool = False

    @property
    def is_derivative(self) -> bool:
        return self.table == DERIVATIVE

    @property
    def value(self) -> Optional[float]:
        if self.shares is None or self.price_per_share is None:
            return None
        return self.shares * self.price_per_share


@dataclass
class Holding:
    """One information table entry of a 13F filing."""
    name_of_issuer: Optional[str] = None
    title_of_class: Optional[str] = None
    cusip: Optional[str] = None
    value: Optional[int] = None
    shares: Optional[float] = None
    share_type: Optional[str] = None
    put_call: Optional[str] = None
    investment_discretion: Optional[str] = None
    voting_sole: Optional[int] = None
    voting_shared: Optional[int] = None
    voting_none: Optional[int] = None


@dataclass
class ReportItem:
    item_number: str
    title: Optional[str] = None
    content: Optional[str] = None


@dataclass
class Exhibit:
    exhibit_number: str
    description: Optional[str] = None
    document: Optional[str] = None


@dataclass
class FilingPerson:
    """One reporting person on a Schedule 13D/13G cover page."""
    name: Optional[str] = None
    cik: Optional[str] = None
    citizenship_or_organization: Optional[str] = None
    person_types: List[str] = field(default_factory=list)
    sole_voting_power: Optional[int] = None
    shared_voting_power: Optional[int] = None
    sole_dispositive_power: Optional[int] = None
    shared_dispositive_power: Optional[int] = None
    shares_beneficially_owned: Optional[int] = None
    percent_of_class: Optional[float] = None
    excludes_certain_shares: bool = False


@dataclass
class ParsedFiling:
    """Base record produced by a form parser."""
    accession_number: str
    form_type: str
    family: str = ''
    issuer: Issuer = field(default_factory=Issuer)
    period_of_report: Optional[date] = None
    parsed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class OwnershipFiling(ParsedFiling):
    """Forms 3/4/5 (XML or legacy HTML)."""
    reporting_owners: List[ReportingOwner] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    remarks: Optional[str] = None
    footnotes: Dict[str, str] = field(default_factory=dict)
    source_encoding: str = 'xml'

    @property
    def primary_owner(self) -> Optional[ReportingOwner]:
        return self.reporting_owners[0] if self.reporting_owners else None

    @property
    def non_derivative_transactions(self) -> List[Transaction]:
        return [t for t in self.transactions if not t.is_derivative]

    @property
    def derivative_transactions(self) -> List[Transaction]:
        return [t for t in self.transactions if t.is_derivative]


@dataclass
class HoldingsFiling(ParsedFiling):
    """13F information table."""
    filer_name: Optional[str] = None
    filer_cik: Optional[str] = None
    report_period: Optional[date] = None
    holdings: List[Holding] = field(default_factory=list)

    @property
    def total_value(self) -> int:
        return sum(h.value or 0 for h in self.holdings)


@dataclass
class CurrentReportFiling(ParsedFiling):
    """8-K, 6-K and 20-F style HTML reports."""
    items: List[ReportItem] = field(default_factory=list)
    exhibits: List[Exhibit] = field(default_factory=list)

    @property
    def item_numbers(self) -> List[str]:
        return [item.item_number for item in self.items]


@dataclass
class BeneficialOwnershipFiling(ParsedFiling):
    """Schedule 13D (active) and 13G (passive) beneficial ownership reports."""
    schedule_type: Optional[str] = None
    cusip: Optional[str] = None
    security_title: Optional[str] = None
    event_date: Optional[date] = None
    amendment_number: Optional[int] = None
    filing_persons: List[FilingPerson] = field(default_factory=list)
    signature_name: Optional[str] = None
    signature_date: Optional[date] = None

    @property
    def is_amendment(self) -> bool:
        return self.form_type.endswith('/A') or self.amendment_number is not None

    @property
    def primary_person(self) -> Optional[FilingPerson]:
        return self.filing_persons[0] if self.filing_persons else None

    @property
    def shares_beneficially_owned(self) -> Optional[int]:
        person = self.primary_person
        return person.shares_beneficially_owned if person else None

    @property
    def percent_of_class(self) -> Optional[float]:
        person = self.primary_person
        return person.percent_of_class if person else None


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
