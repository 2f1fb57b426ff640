"""
Current report parser (8-K, 6-K, 20-F) for tabular HTML documents.

These forms have no fixed structure. Extraction is best effort:
- form type, amendment aware
- trading symbol from the cover page table or inline text
- "Item N.NN" sections
- exhibit index table
"""

import logging
import re
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from ingestion.models import CurrentReportFiling, Exhibit, Issuer, ReportItem
from ingestion.parsers.base import FormParser, normalize_text


logger = logging.getLogger(__name__)

FORM_TYPE_PATTERN = re.compile(r'\b(8-K|6-K|20-F)(\s*/\s*A)?\b', re.IGNORECASE)
ITEM_HEADING_PATTERN = re.compile(
    r'^\s*item\s+(\d{1,2}(?:\.\d{1,2})?)\s*(?:[:.\-–—]|\s|$)\s*(.*)$',
    re.IGNORECASE
)
TRADING_SYMBOL_INLINE_PATTERN = re.compile(
    r'\b(?i:trading\s+symbol\(s\))\s*[:\-–—]?\s*([A-Z][A-Z0-9.]{0,9}(?:\s*,\s*[A-Z][A-Z0-9.]{0,9})*)'
)
REPORT_DATE_PATTERN = re.compile(
    r'date\s+of\s+report[^:]*:?\s*\)?\s*([A-Z][a-z]+\s+\d{1,2}\s*,\s*\d{4})',
    re.IGNORECASE
)

MIN_SECTION_SCORE = 12
COVER_PAGE_LINE_LIMIT = 80
COVER_PAGE_MARKERS = ('trading symbol', 'title of each class', 'securities and exchange commission')
MAX_TITLE_CHARS = 500
MAX_LINE_CHARS = 20_000
MAX_SECTION_CHARS = 200_000


class CurrentReportParser(FormParser):
    family = 'current_report'
    form_types = ('8-K', '8-K/A', '6-K', '6-K/A', '20-F', '20-F/A')

    def _parse(self, raw: str, accession_number: str) -> Optional[CurrentReportFiling]:
        soup = BeautifulSoup(raw, 'lxml')
        page_text = soup.get_text(' ')

        symbol = extract_trading_symbol(soup, page_text)
        exhibits = extract_exhibits(soup)
        # line extraction rewrites the tree, so it goes last
        items = extract_item_sections(extract_text_lines(soup))

        if not items and not exhibits and symbol is None:
            logger.warning(f"No items, exhibits or trading symbol found in {accession_number}")
            return None

        return CurrentReportFiling(
            accession_number=accession_number,
            form_type=detect_form_type(page_text),
            family=self.family,
            issuer=Issuer(trading_symbol=symbol),
            period_of_report=_report_date(page_text),
            items=items,
            exhibits=exhibits,
        )


def detect_form_type(text: str, default: str = '8-K') -> str:
    match = FORM_TYPE_PATTERN.search(text or '')
    if not match:
        return default
    form_type = match.group(1).upper()
    return f"{form_type}/A" if match.group(2) else form_type


def extract_trading_symbol(soup, page_text: str) -> Optional[str]:
    symbol = _symbol_from_cover_table(soup)
    if symbol is not None:
        return symbol

    match = TRADING_SYMBOL_INLINE_PATTERN.search(normalize_text(page_text) or '')
    if match:
        first = match.group(1).split(',')[0].strip()
        return first or None
    return None


def _symbol_from_cover_table(soup) -> Optional[str]:
    for table in soup.find_all('table'):
        if 'trading symbol' not in table.get_text(' ').lower():
            continue

        rows = table.find_all('tr')
        header = _header_column(rows, 'trading symbol')
        if header is None:
            continue
        header_row, symbol_col = header

        for row in rows[header_row + 1:]:
            cells = row.find_all('td')
            if len(cells) <= symbol_col:
                continue
            candidate = re.sub(r'[^A-Z0-9.]', '', normalize_text(cells[symbol_col].get_text(' ')) or '')
            if candidate and len(candidate) <= 10:
                return candidate
    return None


def _header_column(rows, needle: str) -> Optional[Tuple[int, int]]:
    """(row index, column index) of the first cell containing needle."""
    for row_index, row in enumerate(rows):
        for i, cell in enumerate(row.find_all(['th', 'td'])):
            if needle in cell.get_text(' ').lower():
                return row_index, i
    return None


def extract_exhibits(soup) -> List[Exhibit]:
    """First table with "Exhibit" and "Description" headers wins."""
    for table in soup.find_all('table'):
        text = table.get_text(' ').lower()
        if 'exhibit' not in text or 'description' not in text:
            continue

        rows = table.find_all('tr')
        if len(rows) < 2:
            continue

        exhibit_col, desc_col = _exhibit_columns(rows)
        if exhibit_col is None or desc_col is None:
            continue

        exhibits = []
        for row in rows:
            cells = row.find_all('td')
            if len(cells) <= max(exhibit_col, desc_col):
                continue

            number = re.sub(r'[^0-9.]', '', normalize_text(cells[exhibit_col].get_text(' ')) or '')
            # header rows like "Exhibit No." leave only punctuation
            if not re.search(r'\d', number):
                continue

            link = row.find('a', href=True)
            exhibits.append(Exhibit(
                exhibit_number=number,
                description=normalize_text(cells[desc_col].get_text(' ')),
                document=normalize_text(link['href']) if link is not None else None,
            ))

        if exhibits:
            return exhibits

    return []


def _exhibit_columns(rows) -> Tuple[Optional[int], Optional[int]]:
    exhibit_col = None
    desc_col = None
    for row in rows:
        for i, cell in enumerate(row.find_all(['th', 'td'])):
            text = cell.get_text(' ').lower()
            if exhibit_col is None and 'exhibit' in text:
                exhibit_col = i
            if desc_col is None and 'description' in text:
                desc_col = i
        if exhibit_col is not None and desc_col is not None:
            break
    return exhibit_col, desc_col


def extract_text_lines(soup) -> List[str]:
    """Flatten the document to non-blank lines, breaking at block elements."""
    for br in soup.find_all('br'):
        br.replace_with('\n')
    for block in soup.find_all(['p', 'div', 'tr', 'li']):
        block.insert(0, '\n')
    for cell in soup.find_all(['td', 'th']):
        cell.insert(0, ' ')

    root = soup.body or soup
    lines = []
    for part in re.split(r'[\r\n]+', root.get_text()):
        line = normalize_text(part)
        if line:
            lines.append(line[:MAX_LINE_CHARS])
    return lines


def extract_item_sections(lines: List[str]) -> List[ReportItem]:
    """
    Split lines into "Item N.NN" sections.

    Each heading's content runs to the next heading. Short sections (table of
    contents entries) are ignored, and sections near the top of the document
    that read like the cover page are scored down. The best-scoring occurrence
    of each item number is kept, in document order.
    """
    headings = []
    for index, line in enumerate(lines):
        match = ITEM_HEADING_PATTERN.match(line)
        if not match:
            continue

        title = normalize_text(match.group(2))
        if title:
            title = title[:MAX_TITLE_CHARS]
        elif index + 1 < len(lines):
            following = lines[index + 1]
            if not ITEM_HEADING_PATTERN.match(following) and len(following) <= 200:
                title = following

        headings.append((index, match.group(1), title))

    best: Dict[str, Tuple[int, int, ReportItem]] = {}
    for position, (start, item_number, title) in enumerate(headings):
        end = headings[position + 1][0] if position + 1 < len(headings) else len(lines)
        content = '\n'.join(lines[start + 1:end]).strip()[:MAX_SECTION_CHARS]

        score = score_content(content)
        if score < MIN_SECTION_SCORE:
            continue
        score = _adjust_for_cover_page(score, content, start)
        if score < MIN_SECTION_SCORE:
            continue

        existing = best.get(item_number)
        if existing is None or score > existing[0]:
            best[item_number] = (score, start, ReportItem(item_number, title, content))

    return [entry[2] for entry in sorted(best.values(), key=lambda entry: entry[1])]


def score_content(content: str) -> int:
    text = (content or '').strip()
    if not text:
        return 0
    return min(len(text), 10_000) // 10 + min(len(text.split()), 2_000)


def _adjust_for_cover_page(score: int, content: str, start: int) -> int:
    if start > COVER_PAGE_LINE_LIMIT:
        return score
    lower = content.lower()
    if any(marker in lower for marker in COVER_PAGE_MARKERS):
        return score // 10
    return score


def _report_date(page_text: str) -> Optional[date]:
    match = REPORT_DATE_PATTERN.search(normalize_text(page_text) or '')
    if not match:
        return None
    text = re.sub(r'\s*,\s*', ', ', match.group(1))
    try:
        return datetime.strptime(text, '%B %d, %Y').date()
    except ValueError:
        return None
