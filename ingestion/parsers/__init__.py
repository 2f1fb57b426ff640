"""
Form parsers, one per form family, selected by form type.
"""

from typing import Dict, List

from ingestion.config import ConfigurationError
from ingestion.parsers.base import FormParser
from ingestion.parsers.beneficial_ownership import BeneficialOwnershipParser
from ingestion.parsers.current_report import CurrentReportParser
from ingestion.parsers.information_table import InformationTableParser
from ingestion.parsers.ownership_html import OwnershipHtmlParser
from ingestion.parsers.ownership_xml import OwnershipXmlParser


_PARSERS: Dict[str, FormParser] = {}
for _parser in (
    OwnershipXmlParser(),
    InformationTableParser(),
    CurrentReportParser(),
    BeneficialOwnershipParser(),
):
    for _form_type in _parser.form_types:
        _PARSERS[_form_type] = _parser


def normalize_form_type(form_type: str) -> str:
    return (form_type or '').strip().upper().replace(' ', '')


def get_parser(form_type: str) -> FormParser:
    """
    Look up the parser for a form type.

    Raises:
        ConfigurationError: If no parser handles the form type
    """
    parser = _PARSERS.get(normalize_form_type(form_type))
    if parser is None:
        raise ConfigurationError(
            f"No parser for form type '{form_type}'. Supported: {', '.join(supported_form_types())}"
        )
    return parser


def supported_form_types() -> List[str]:
    return sorted(_PARSERS)


__all__ = [
    'BeneficialOwnershipParser',
    'CurrentReportParser',
    'FormParser',
    'InformationTableParser',
    'OwnershipHtmlParser',
    'OwnershipXmlParser',
    'get_parser',
    'normalize_form_type',
    'supported_form_types',
]
