"""
Parsers for agent responses.

Each agent answers in a small fixed grammar: records split by a record
delimiter, fields split by a tuple delimiter, and sentinel phrases meaning
"nothing to report". The parsers here only know the grammar, never the prompt
wording. A response that does not fit raises LLMFormatError; the calling
operation decides what "no result" means for it.
"""

import re
from typing import List, Optional

from ..errors import LLMFormatError
from ..models import EntityCandidate, TagProposal, PropertyVerdict, PropertyVerdictKind


TUPLE_DELIMITER = "{tuple_delimiter}"
RECORD_DELIMITER = "**{record_delimiter}**"

NO_ENTITIES = "no additional entities identified"
NO_MATCH = "no match found"
NO_TAGS = "no additional object tag detected"
NEW_TEMPLATE = "**new**"
SAME_VALUE = "suggested same value"
NOT_RELEVANT = "no relevant knowledge found"
NO_CHANGE = "no change needed"
DOES_NOT_CONTAIN = "does not contain"

# Models sometimes drop or double the emphasis around delimiters
_TUPLE_SPLIT = re.compile(r"\**\{tuple_delimiter\}\**")
_RECORD_SPLIT = re.compile(r"\**\{record_delimiter\}\**")
_INTEGER = re.compile(r"-?\d+")


def clean_response(response: Optional[str]) -> str:
    """Strip whitespace, code fences and wrapping quotes from a raw response."""
    text = (response or "").strip()

    # Remove any markdown code block formatting if present
    if text.startswith("```"):
        text = text[3:]
        first_line, _, rest = text.partition("\n")
        if rest and first_line.strip().isalpha():
            text = rest
    if text.endswith("```"):
        text = text[:-3]

    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        text = text[1:-1].strip()
    return text


def _has_sentinel(text: str, sentinel: str) -> bool:
    return sentinel.lower() in text.lower()


def _clean_field(field: str) -> str:
    return field.strip().strip("()").strip().strip('"').strip()


def split_tuples(text: str) -> List[str]:
    """Split on the tuple delimiter, dropping empty fields."""
    return [part.strip() for part in _TUPLE_SPLIT.split(text) if part.strip()]


def split_records(text: str) -> List[str]:
    """Split on the record delimiter, dropping empty records."""
    return [part.strip() for part in _RECORD_SPLIT.split(text) if part.strip()]


def parse_atomic_knowledge(response: str) -> str:
    """
    Join the atomic statements of a knowledge extraction answer.

    Duplicate statements are dropped and order is kept.

    Raises:
        LLMFormatError: If the answer holds no statement
    """
    text = clean_response(response)
    statements: List[str] = []
    for statement in split_tuples(text):
        statement = statement.strip().strip('"').strip()
        if statement and statement not in statements:
            statements.append(statement)

    if not statements:
        raise LLMFormatError("Knowledge extraction returned no statement", response)

    return " ".join(statements)


def parse_quotes(response: str) -> List[str]:
    """
    Parse the supporting sentences of a knowledge quotes answer.

    Raises:
        LLMFormatError: If the answer holds no quote
    """
    quotes: List[str] = []
    for quote in split_tuples(clean_response(response)):
        quote = quote.strip().strip("'\"").strip()
        if quote and quote not in quotes:
            quotes.append(quote)

    if not quotes:
        raise LLMFormatError("Knowledge quotes returned no quote", response)
    return quotes


def parse_entity_types(response: str) -> List[str]:
    """
    Parse "[TYPE 1, TYPE 2]" into a list of types.

    Raises:
        LLMFormatError: If no type can be read
    """
    text = clean_response(response)
    start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        text = text[start + 1:end]

    types = [item.strip().strip('"').strip("'").strip() for item in re.split(r"[,\n]", text)]
    types = [item for item in types if item]
    if not types:
        raise LLMFormatError("Entity type listing is empty", response)
    return types


def parse_entities(response: str) -> List[EntityCandidate]:
    """
    Parse name/type/description records of the entity extraction agent.

    Malformed records are skipped. The "no additional entities" sentinel
    yields an empty list.

    Raises:
        LLMFormatError: If the answer has neither the sentinel nor a valid record
    """
    text = clean_response(response)
    if _has_sentinel(text, NO_ENTITIES):
        return []

    candidates = []
    for record in split_records(text):
        fields = [_clean_field(field) for field in _TUPLE_SPLIT.split(record)]
        if len(fields) < 3 or not fields[0]:
            continue
        candidates.append(EntityCandidate(
            name=fields[0],
            entity_type=fields[1],
            description=fields[2]
        ))

    if not candidates:
        raise LLMFormatError("Entity extraction returned no valid record", response)
    return candidates


def _parse_index(text: str, count: int, what: str, response: str) -> int:
    match = _INTEGER.search(text)
    if not match:
        raise LLMFormatError(f"{what} answer holds no index", response)

    index = int(match.group())
    if index < 0 or index >= count:
        raise LLMFormatError(f"{what} index {index} out of range for {count} options", response)
    return index


def parse_match_index(response: str, count: int) -> Optional[int]:
    """
    Parse the concept arbitration answer.

    Returns:
        The chosen candidate index, or None for "no match found"

    Raises:
        LLMFormatError: If the answer is neither the sentinel nor a valid index
    """
    text = clean_response(response)
    if _has_sentinel(text, NO_MATCH):
        return None
    return _parse_index(text, count, "Concept match", response)


def parse_template_choice(response: str, count: int) -> Optional[int]:
    """
    Parse the template selection answer.

    Returns:
        The chosen template index, or None when a new template is requested

    Raises:
        LLMFormatError: If the answer is neither "**new**" nor a valid index
    """
    text = clean_response(response)
    if _has_sentinel(text, NEW_TEMPLATE) or text.lower() == "new":
        return None
    return _parse_index(text, count, "Template selection", response)


def parse_tag_proposals(response: str) -> List[TagProposal]:
    """
    Parse ("parent"**{tuple_delimiter}**"parent desc"**{tuple_delimiter}**"tag"**{tuple_delimiter}**"tag desc") records.

    Records without four fields are skipped; the "no additional object tag
    detected" sentinel yields an empty list.

    Raises:
        LLMFormatError: If the answer has neither the sentinel nor a valid record
    """
    text = clean_response(response)
    if _has_sentinel(text, NO_TAGS):
        return []

    proposals = []
    for record in split_records(text):
        fields = [_clean_field(field) for field in _TUPLE_SPLIT.split(record)]
        if len(fields) != 4:
            continue
        proposals.append(TagProposal(
            parent_name=fields[0],
            parent_description=fields[1],
            tag_name=fields[2],
            tag_description=fields[3]
        ))

    if not proposals:
        raise LLMFormatError("Tag proposal returned no valid record", response)
    return proposals


def parse_property_verdict(response: str) -> PropertyVerdict:
    """
    Parse the property refresh answer into one of three outcomes.

    Raises:
        LLMFormatError: If the answer is empty
    """
    text = clean_response(response)
    if _has_sentinel(text, SAME_VALUE):
        return PropertyVerdict(kind=PropertyVerdictKind.SAME_VALUE)
    if _has_sentinel(text, NOT_RELEVANT):
        return PropertyVerdict(kind=PropertyVerdictKind.NOT_RELEVANT)
    if not text:
        raise LLMFormatError("Property refresh returned an empty value", response)
    return PropertyVerdict(kind=PropertyVerdictKind.NEW_VALUE, value=text)


def parse_description(response: str) -> Optional[str]:
    """
    Parse the description refresh answer.

    Returns:
        The new description, or None for "no change needed"

    Raises:
        LLMFormatError: If the answer is empty
    """
    text = clean_response(response)
    if _has_sentinel(text, NO_CHANGE):
        return None
    if not text:
        raise LLMFormatError("Description refresh returned nothing", response)
    return text


def parse_presence(response: str) -> List[str]:
    """
    Parse the names a text uses for a concept.

    Returns:
        The names found, empty for "does not contain"
    """
    text = clean_response(response)
    if _has_sentinel(text, DOES_NOT_CONTAIN):
        return []
    return [_clean_field(name) for name in split_tuples(text) if _clean_field(name)]
