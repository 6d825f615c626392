# oai_harvester/parser.py
# This module turns OAI-PMH XML responses into flat Identify and article records.

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import xmltodict
from xml.parsers.expat import ExpatError

from .errors import MalformedResponseError, RecordError
from .utils import utc_timestamp

logger = logging.getLogger(__name__)

# Whatever prefixes a repository declares, parsed keys use these ones.
NAMESPACES = {
    "http://www.openarchives.org/OAI/2.0/": None,
    "http://www.openarchives.org/OAI/2.0/oai_dc/": "oai_dc",
    "http://purl.org/dc/elements/1.1/": "dc",
    "http://www.w3.org/XML/1998/namespace": "xml",
    "http://www.w3.org/2001/XMLSchema-instance": "xsi",
}

IDENTIFY_FIELDS = (
    "repositoryName",
    "baseURL",
    "protocolVersion",
    "adminEmail",
    "earliestDatestamp",
    "deletedRecord",
    "granularity",
    "compression",
    "description",
)

XmlInput = Union[str, bytes, Mapping[str, Any]]


def parse_oai_xml(xml_data: XmlInput) -> Dict[str, Any]:
    """
    Parses an OAI-PMH response into nested dictionaries.

    Args:
        xml_data: Raw XML text or bytes. An already parsed document is returned as is.

    Returns:
        The document as produced by xmltodict, with namespace prefixes normalized.

    Raises:
        MalformedResponseError: If the payload is empty or not well-formed XML.
    """
    if isinstance(xml_data, Mapping):
        return dict(xml_data)
    if not xml_data:
        raise MalformedResponseError("Empty XML document")
    try:
        return xmltodict.parse(
            xml_data,
            process_namespaces=True,
            namespaces=NAMESPACES,
        )
    except ExpatError as e:
        if "unbound prefix" not in str(e):
            raise MalformedResponseError(f"Invalid XML: {e}") from e
        # Some repositories forget the xmlns declarations; keep their literal prefixes.
        logger.warning("Undeclared namespace prefix in OAI response, parsing without namespaces")
    try:
        return xmltodict.parse(xml_data)
    except ExpatError as e:
        raise MalformedResponseError(f"Invalid XML: {e}") from e


def oai_root(document: Mapping[str, Any]) -> Mapping[str, Any]:
    root = document.get("OAI-PMH") if isinstance(document, Mapping) else None
    return root if isinstance(root, Mapping) else {}


def as_list(value: Any) -> List[Any]:
    # xmltodict returns a single child as a mapping and repeated children as a list
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def extract_value(field: Any) -> Optional[str]:
    """Single trimmed value from a Dublin Core field; the first one if repeated."""
    if not field:
        return None
    if isinstance(field, str):
        return field.strip()
    if isinstance(field, Mapping):
        text = field.get("#text")
        return text.strip() if isinstance(text, str) else None
    if isinstance(field, list):
        return extract_value(field[0])
    return None


def extract_value_with_lang(field: Any) -> Tuple[Optional[str], Optional[str]]:
    """Value and xml:lang of a Dublin Core field; only the first element is inspected."""
    if not field:
        return None, None
    if isinstance(field, str):
        return field.strip(), None
    if isinstance(field, Mapping):
        text = field.get("#text")
        if not isinstance(text, str) or not text:
            return None, None
        lang = field.get("@xml:lang") or field.get("@lang")
        return text.strip(), lang or None
    if isinstance(field, list):
        return extract_value_with_lang(field[0])
    return None, None


def extract_list_value(field: Any) -> List[str]:
    values = (extract_value(item) for item in as_list(field))
    return [value for value in values if value is not None]


def extract_resumption_token(list_records: Any) -> Optional[str]:
    """
    Reads the resumption token from a parsed ListRecords element.

    The token may come back as plain text, as a mapping with the text under
    ``#text`` (when the element has attributes such as completeListSize), or
    as a ``resumptionToken`` attribute. Any other shape means no token.
    """
    if not isinstance(list_records, Mapping):
        return None
    token = list_records.get("resumptionToken")
    if not token:
        return None
    if isinstance(token, str):
        return token.strip() or None
    if isinstance(token, Mapping):
        for key in ("#text", "@resumptionToken"):
            value = token.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        logger.debug("Resumption token without a value: %s", sorted(token))
        return None
    logger.warning("Unrecognised resumption token shape: %s", type(token).__name__)
    return None


def remove_empty_values(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None or an empty list."""
    return {
        key: value
        for key, value in record.items()
        if value is not None and not (isinstance(value, list) and not value)
    }


def parse_identify_xml(xml_data: XmlInput, journal_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Parses an OAI-PMH Identify response into a flat record.

    Args:
        xml_data: The Identify response.
        journal_key: The journal the repository belongs to.

    Returns:
        A dictionary holding only the repository fields present in the response.
    """
    identify = oai_root(parse_oai_xml(xml_data)).get("Identify")
    if not isinstance(identify, Mapping):
        raise MalformedResponseError("Invalid Identify XML structure")

    record = {
        "journal_key": journal_key,
        "created_at": utc_timestamp(),
        "type": "Identify",
    }
    for name in IDENTIFY_FIELDS:
        record[name] = _clean(identify.get(name)) or None
    return remove_empty_values(record)


def parse_list_records_xml(xml_data: XmlInput, journal_key: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Parses an OAI-PMH ListRecords page into article records.

    Args:
        xml_data: One ListRecords response page.
        journal_key: The journal the records belong to.

    Returns:
        One record per ``<record>`` element, in document order. Records that
        fail to normalize are returned as ``parse_error`` stubs.
    """
    root = oai_root(parse_oai_xml(xml_data))
    if "ListRecords" not in root:
        raise MalformedResponseError("Invalid ListRecords XML structure")

    list_records = root.get("ListRecords") or {}
    records = as_list(list_records.get("record")) if isinstance(list_records, Mapping) else []
    logger.debug("Found %d records in XML", len(records))

    return [
        parse_individual_record(record, index, journal_key)
        for index, record in enumerate(records, start=1)
    ]


def _dc_field(dc: Mapping[str, Any], name: str) -> Any:
    return dc.get(f"dc:{name}") or dc.get(name)


def parse_individual_record(
    record: Mapping[str, Any],
    record_index: int,
    journal_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Parses a single OAI-PMH record into a flat article dictionary.

    Args:
        record: The parsed ``<record>`` element.
        record_index: 1-based position of the record in its page.
        journal_key: The journal identifier.

    Returns:
        The article, or a ``parse_error`` stub if the record could not be read.
    """
    try:
        if not isinstance(record, Mapping):
            raise RecordError(f"Unexpected record content: {type(record).__name__}")
        header = record.get("header") or {}
        metadata = record.get("metadata") or {}
        dc = metadata.get("oai_dc:dc") or metadata.get("dc") or {}

        title, title_lang = extract_value_with_lang(_dc_field(dc, "title"))
        description, description_lang = extract_value_with_lang(_dc_field(dc, "description"))
        publisher, publisher_lang = extract_value_with_lang(_dc_field(dc, "publisher"))

        article = {
            "journal_key": journal_key,
            "created_at": utc_timestamp(),
            "type": "ListRecords",
            "title": title,
            "title_lang": title_lang if title else None,
            "creator": extract_value(_dc_field(dc, "creator")),
            "subjects": extract_list_value(_dc_field(dc, "subject")),
            "description": description,
            "description_lang": description_lang if description else None,
            "publisher": publisher,
            "publisher_lang": publisher_lang if publisher else None,
            "date": extract_value(_dc_field(dc, "date")),
            "types": extract_list_value(_dc_field(dc, "type")),
            "format": extract_value(_dc_field(dc, "format")),
            "identifier": extract_value(_dc_field(dc, "identifier")) or extract_value(header.get("identifier")),
            "sources": extract_list_value(_dc_field(dc, "source")),
            "language": extract_value(_dc_field(dc, "language")),
            "relation": extract_value(_dc_field(dc, "relation")),
            "datestamp": header.get("datestamp") or None,
            "setSpec": header.get("setSpec") or None,
        }
        return remove_empty_values(article)
    except Exception as e:
        logger.error("Failed to parse record at index %d: %s", record_index, e)
        return {
            "journal_key": journal_key,
            "created_at": utc_timestamp(),
            "type": "ListRecords",
            "recordIndex": record_index,
            "error": str(e),
            "status": "parse_error",
        }


def validate_oai_xml(xml_data: XmlInput) -> Dict[str, Any]:
    """Quick structural check of an OAI-PMH document."""
    try:
        document = parse_oai_xml(xml_data)
    except MalformedResponseError as e:
        return {"valid": False, "error": str(e)}

    root = document.get("OAI-PMH")
    if root is None:
        return {"valid": False, "error": "Missing OAI-PMH root element"}
    if not isinstance(root, Mapping):
        root = {}
    if "Identify" in root:
        kind = "Identify"
    elif "ListRecords" in root:
        kind = "ListRecords"
    else:
        kind = "Unknown"
    return {"valid": True, "type": kind}
