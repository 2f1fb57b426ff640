"""
Schedule 13D / 13G beneficial ownership parser.

Structured filings carry an <edgarSubmission> with one cover page and one
<reportingPersonInfo> per filing person. Older filings are text or HTML
where every filing person gets a numbered cover grid (rows 1-14 on a 13D,
1-12 on a 13G); those are read line by line from the document text.
"""

import logging
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from ingestion.models import BeneficialOwnershipFiling, FilingPerson, Issuer
from ingestion.parsers.base import (
    FormParser,
    extract_block,
    is_true,
    normalize_text,
    parse_date,
    parse_int,
    parse_number,
)


logger = logging.getLogger(__name__)

SUBMISSION_TYPE_PATTERN = re.compile(
    r'(?:CONFORMED SUBMISSION TYPE:|<TYPE>)\s*(SC\s*13[DG](?:/A)?)', re.IGNORECASE
)
SCHEDULE_HEADING_PATTERN = re.compile(r'\bSCHEDULE\s+(13[DG])\b', re.IGNORECASE)
AMENDMENT_PATTERN = re.compile(r'\(\s*Amendment\s+No\.?\s*:?\s*(\d+)\s*\)', re.IGNORECASE)
SUBJECT_COMPANY_PATTERN = re.compile(
    r'SUBJECT COMPANY:.*?COMPANY CONFORMED NAME:\s*([^\n]+?)\s*\n.*?CENTRAL INDEX KEY:\s*(\d+)',
    re.IGNORECASE | re.DOTALL
)

# Cover page values sit on the line above their parenthesized caption
ISSUER_CAPTION = re.compile(r'^\(\s*Name\s+of\s+Issuer\s*\)', re.IGNORECASE)
CLASS_CAPTION = re.compile(r'^\(\s*Title\s+of\s+Class\s+of\s+Securities\s*\)', re.IGNORECASE)
CUSIP_CAPTION = re.compile(r'^\(\s*CUSIP\s+Number\s*\)', re.IGNORECASE)
EVENT_CAPTION = re.compile(r'^\(\s*Date\s+of\s+Event\b', re.IGNORECASE)
RULE_LINE = re.compile(r'^[-_=*\s]+$')

PERSON_NAME_LABEL = re.compile(r'NAMES?\s+OF\s+REPORTING\s+PERSONS?', re.IGNORECASE)
IDENTIFICATION_LINE = re.compile(r'I\.?\s*R\.?\s*S\.?\s|IDENTIFICATION\s+NO|^\(ENTITIES ONLY\)', re.IGNORECASE)

# Cover grid rows, in the order they appear for each filing person
GRID_FIELDS = (
    ('citizenship_or_organization', re.compile(r'CITIZENSHIP\s+OR\s+PLACE\s+OF\s+ORGANI[SZ]ATION', re.IGNORECASE)),
    ('sole_voting_power', re.compile(r'SOLE\s+VOTING\s+POWER', re.IGNORECASE)),
    ('shared_voting_power', re.compile(r'SHARED\s+VOTING\s+POWER', re.IGNORECASE)),
    ('sole_dispositive_power', re.compile(r'SOLE\s+DISPOSITIVE\s+POWER', re.IGNORECASE)),
    ('shared_dispositive_power', re.compile(r'SHARED\s+DISPOSITIVE\s+POWER', re.IGNORECASE)),
    ('shares_beneficially_owned', re.compile(
        r'AGGREGATE\s+AMOUNT\s+BENEFICIALLY\s+OWNED(?:\s+BY\s+EACH\s+REPORTING\s+PERSON)?', re.IGNORECASE)),
    ('percent_of_class', re.compile(
        r'PERCENT\s+OF\s+CLASS\s+REPRESENTED\s+BY\s+AMOUNT\s+IN\s+ROW\s*\(?\s*\d+\s*\)?', re.IGNORECASE)),
    ('person_types', re.compile(
        r'TYPE\s+OF\s+REPORTING\s+PERSON(?:\s*\(\s*SEE\s+INSTRUCTIONS\s*\))?', re.IGNORECASE)),
)
SHARE_FIELDS = {
    'sole_voting_power',
    'shared_voting_power',
    'sole_dispositive_power',
    'shared_dispositive_power',
    'shares_beneficially_owned',
}


class BeneficialOwnershipParser(FormParser):
    family = 'beneficial_ownership'
    form_types = (
        'SC13D', 'SC13D/A', 'SC13G', 'SC13G/A',
        'SCHEDULE13D', 'SCHEDULE13D/A', 'SCHEDULE13G', 'SCHEDULE13G/A',
    )

    def _parse(self, raw: str, accession_number: str) -> Optional[BeneficialOwnershipFiling]:
        block = extract_block(raw, 'edgarSubmission')
        if block is not None and re.search(r'<(?:\w+:)?coverPage[\s>]', block, re.IGNORECASE):
            filing = _parse_xml(block, accession_number, self.family)
        else:
            filing = _parse_text(raw, accession_number, self.family)

        if not filing.cusip and not any(
            p.shares_beneficially_owned is not None or p.percent_of_class is not None
            for p in filing.filing_persons
        ):
            logger.warning(f"No cover page data found for Schedule 13D/G {accession_number}")
            return None

        filing.schedule_type = schedule_type(filing.form_type) or filing.schedule_type
        filing.period_of_report = filing.event_date

        logger.debug(
            f"Parsed {filing.form_type or 'Schedule 13D/G'} {accession_number}: "
            f"{len(filing.filing_persons)} filing persons, CUSIP {filing.cusip}"
        )
        return filing


def _parse_xml(block: str, accession_number: str, family: str) -> BeneficialOwnershipFiling:
    soup = BeautifulSoup(block, 'xml')

    filing = BeneficialOwnershipFiling(
        accession_number=accession_number,
        form_type=_text(soup, 'submissionType') or '',
        family=family,
    )

    cover = soup.find('coverPage')
    filing.issuer = Issuer(
        cik=_text(cover, 'issuerCik', 'issuerCIK'),
        name=_text(cover, 'issuerName'),
    )
    filing.cusip = normalize_cusip(_text(cover, 'cusipNumber', 'issuerCusip', 'issuerCUSIP'))
    filing.security_title = _text(cover, 'securityTitle', 'titleOfClass')
    filing.event_date = parse_date(_text(cover, 'dateOfEvent', 'eventDateRequiresFilingThisStatement'))
    if is_true(_text(cover, 'isAmendment')):
        filing.amendment_number = parse_int(_text(cover, 'amendmentNo'))

    filing.filing_persons = [_parse_person(info) for info in soup.find_all('reportingPersonInfo')]

    # The filer's credentials identify the first person when it carries no CIK
    credentials = soup.find('credentials')
    primary = filing.primary_person
    if credentials is not None and primary is not None and primary.cik is None:
        primary.cik = _text(credentials, 'cik')

    signature = soup.find('signatureBlock')
    if signature is not None:
        filing.signature_name = _text(signature, 'signatureName')
        filing.signature_date = parse_date(_text(signature, 'signatureDate'))

    return filing


def _parse_person(info) -> FilingPerson:
    person = FilingPerson(
        name=_text(info, 'nameOfReportingPerson', 'reportingPersonName'),
        cik=_text(info, 'reportingPersonCik', 'reportingPersonCIK'),
        citizenship_or_organization=_text(info, 'citizenshipOrPlaceOfOrganization', 'citizenshipOrOrganization'),
        person_types=parse_person_types(_text(info, 'typeOfReportingPerson')),
    )

    ownership = info.find('ownershipInfo') or info
    person.sole_voting_power = parse_shares(_text(ownership, 'soleVotingPower'))
    person.shared_voting_power = parse_shares(_text(ownership, 'sharedVotingPower'))
    person.sole_dispositive_power = parse_shares(_text(ownership, 'soleDispositivePower'))
    person.shared_dispositive_power = parse_shares(_text(ownership, 'sharedDispositivePower'))
    person.shares_beneficially_owned = parse_shares(
        _text(ownership, 'aggregateAmountBeneficiallyOwned', 'aggregateAmountOwned')
    )
    person.percent_of_class = parse_number(_text(ownership, 'percentOfClass', 'classPercent'))
    person.excludes_certain_shares = is_true(_text(ownership, 'checkIfExcludesCertainShares'))
    return person


def _parse_text(raw: str, accession_number: str, family: str) -> BeneficialOwnershipFiling:
    filing = BeneficialOwnershipFiling(
        accession_number=accession_number,
        form_type=_submission_type(raw),
        family=family,
    )

    header = SUBJECT_COMPANY_PATTERN.search(raw)
    if header:
        filing.issuer = Issuer(cik=header.group(2), name=header.group(1).strip())

    text = BeautifulSoup(raw, 'lxml').get_text('\n')
    lines = [line for line in (normalize_text(l) for l in text.splitlines()) if line]

    if not filing.form_type:
        heading = SCHEDULE_HEADING_PATTERN.search(text)
        if heading:
            filing.schedule_type = heading.group(1).upper()

    amendment = AMENDMENT_PATTERN.search(text)
    if amendment:
        filing.amendment_number = int(amendment.group(1))

    issuer_name = _value_above(lines, ISSUER_CAPTION)
    if filing.issuer.name is None and issuer_name:
        filing.issuer = Issuer(cik=filing.issuer.cik, name=issuer_name)
    filing.security_title = _value_above(lines, CLASS_CAPTION)
    filing.cusip = normalize_cusip(_value_above(lines, CUSIP_CAPTION))
    filing.event_date = parse_date(_value_above(lines, EVENT_CAPTION))

    filing.filing_persons = _parse_cover_grids(lines)
    return filing


def _parse_cover_grids(lines: List[str]) -> List[FilingPerson]:
    """Walk the numbered cover grids; each 'Names of Reporting Persons' row starts a new person."""
    persons: List[FilingPerson] = []
    person: Optional[FilingPerson] = None

    for i, line in enumerate(lines):
        if PERSON_NAME_LABEL.search(line):
            person = FilingPerson(name=_grid_value(lines, i, PERSON_NAME_LABEL, skip=IDENTIFICATION_LINE))
            persons.append(person)
            continue

        if person is None:
            continue

        for attr, label in GRID_FIELDS:
            if not label.search(line) or getattr(person, attr) not in (None, []):
                continue
            value = _grid_value(lines, i, label)
            if attr in SHARE_FIELDS:
                setattr(person, attr, parse_shares(value))
            elif attr == 'percent_of_class':
                person.percent_of_class = parse_number(value)
            elif attr == 'person_types':
                person.person_types = parse_person_types(value)
            else:
                person.citizenship_or_organization = value
            break

    return persons


def _grid_value(lines: List[str], index: int, label, skip=None) -> Optional[str]:
    """Value printed after a grid label, on the same line or the next one."""
    match = label.search(lines[index])
    rest = lines[index][match.end():].strip(' :.-') if match else ''
    if rest and not (skip is not None and skip.search(rest)):
        return rest

    for line in lines[index + 1:index + 4]:
        if skip is not None and skip.search(line):
            continue
        if _is_grid_label(line):
            return None
        return line
    return None


def _is_grid_label(line: str) -> bool:
    if PERSON_NAME_LABEL.search(line):
        return True
    return any(label.search(line) for _, label in GRID_FIELDS)


def _value_above(lines: List[str], caption) -> Optional[str]:
    for i, line in enumerate(lines):
        if not caption.search(line):
            continue
        for above in reversed(lines[:i]):
            if RULE_LINE.match(above):
                continue
            return None if above.startswith('(') else above
        return None
    return None


def _submission_type(raw: str) -> str:
    match = SUBMISSION_TYPE_PATTERN.search(raw)
    if not match:
        return ''
    return re.sub(r'^SC\s*', 'SC ', match.group(1).upper())


def schedule_type(form_type: Optional[str]) -> Optional[str]:
    """'SC 13D/A' -> '13D', 'SCHEDULE 13G' -> '13G'."""
    upper = (form_type or '').upper()
    if '13D' in upper:
        return '13D'
    if '13G' in upper:
        return '13G'
    return None


def normalize_cusip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = re.sub(r'[^A-Za-z0-9]', '', value).upper()
    return cleaned or None


def parse_shares(value: Optional[str]) -> Optional[int]:
    """Share counts; cover grids write zero as '-0-'."""
    if value is None:
        return None
    if value.strip().strip('-').strip() == '0':
        return 0
    return parse_int(value)


def parse_person_types(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.upper() for part in re.split(r'[,;\s]+', value) if part]


def _text(parent, *tags: str) -> Optional[str]:
    if parent is None:
        return None
    for tag in tags:
        el = parent.find(tag)
        if el is not None:
            text = el.get_text(strip=True)
            if text:
                return text
    return None
