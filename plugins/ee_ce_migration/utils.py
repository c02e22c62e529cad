"""
Utility functions for the migration engine.

This module provides identifier validation, the allow-list used before any
table or column name is interpolated into SQL, literal quoting for planned
statements, and small formatting helpers.
"""

import base64
import datetime
import json
import re
import uuid
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from ee_ce_migration.exceptions import InvalidIdentifierError

IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')
MAX_IDENTIFIER_LENGTH = 128


def validate_sql_identifier(identifier: str, identifier_type: str = "identifier") -> str:
    """
    Validate SQL identifiers to prevent SQL injection.

    Args:
        identifier: The identifier to validate
        identifier_type: Type description for error messages (e.g., "table name", "column")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        InvalidIdentifierError: If the identifier is invalid

    Rules:
        - Non-empty
        - Max 128 characters
        - Must start with letter or underscore
        - Can contain only alphanumeric characters and underscores

    Examples:
        >>> validate_sql_identifier("helpdesk_ticket")
        'helpdesk_ticket'
        >>> validate_sql_identifier("drop; --")  # doctest: +SKIP
        InvalidIdentifierError: Invalid identifier 'drop; --': ...
    """
    if not isinstance(identifier, str) or not identifier:
        raise InvalidIdentifierError(f"Invalid {identifier_type}: cannot be empty")

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise InvalidIdentifierError(
            f"Invalid {identifier_type}: exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters "
            f"(got {len(identifier)} characters)"
        )

    if not IDENTIFIER_PATTERN.match(identifier):
        raise InvalidIdentifierError(
            f"Invalid {identifier_type} '{sanitize_for_log(identifier)}': must start with letter "
            "or underscore and contain only alphanumeric characters and underscores"
        )

    return identifier


class IdentifierAllowList:
    """
    Allow-list of identifiers enumerated from a live schema.

    Names pass only if they satisfy the identifier charset AND were seen
    when the schema was enumerated. Identifier checks happen before any
    name is placed into a statement.
    """

    def __init__(self, names: Iterable[str], identifier_type: str = "identifier"):
        self.identifier_type = identifier_type
        self._names = set()
        for name in names:
            self._names.add(validate_sql_identifier(name, identifier_type))

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def check(self, name: str) -> str:
        """
        Return name if it is allowed.

        Raises:
            InvalidIdentifierError: If name is malformed or was not enumerated
        """
        validate_sql_identifier(name, self.identifier_type)
        if name not in self._names:
            raise InvalidIdentifierError(
                f"Unknown {self.identifier_type} '{name}': not present in the enumerated schema"
            )
        return name

    def check_all(self, names: Iterable[str]) -> List[str]:
        return [self.check(name) for name in names]


def quote_identifier(identifier: str) -> str:
    """
    Double-quote a validated identifier for use in a planned statement.

    Examples:
        >>> quote_identifier("helpdesk_ticket")
        '"helpdesk_ticket"'
    """
    return '"' + validate_sql_identifier(identifier).replace('"', '""') + '"'


def quote_sql_literal(value: Any) -> str:
    """
    Quote a value for safe use inside a planned statement.

    - Integers: returned as-is (no quoting)
    - Strings: single-quoted with escaped quotes

    Examples:
        >>> quote_sql_literal(123)
        '123'
        >>> quote_sql_literal("O'Brien")
        "'O''Brien'"
    """
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return str(value)

    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def sql_text_array(values: Iterable[str]) -> str:
    """
    Render an ARRAY[...] of text literals.

    Examples:
        >>> sql_text_array(['%sign%', '%voip%'])
        "ARRAY['%sign%', '%voip%']"
    """
    values = list(values)
    if not values:
        return "ARRAY[]::text[]"
    return "ARRAY[" + ", ".join(quote_sql_literal(v) for v in values) + "]"


def sanitize_for_log(value: str, max_length: int = 100) -> str:
    """
    Sanitize an untrusted name for logging and error messages.

    This does NOT make the name safe for SQL queries.

    Examples:
        >>> sanitize_for_log("table'; DROP TABLE--")
        'table___DROP_TABLE--'
    """
    sanitized = re.sub(r'[^a-zA-Z0-9_-]', '_', str(value))
    return truncate_string(sanitized, max_length)


def format_bytes(num_bytes: float) -> str:
    """
    Format bytes into human-readable format.

    Examples:
        >>> format_bytes(1536)
        '1.5 KB'
        >>> format_bytes(1048576)
        '1.0 MB'
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if num_bytes < 1024.0 or unit == 'TB':
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.1f} PB"


def truncate_string(s: Optional[str], max_length: int = 100, suffix: str = "...") -> Optional[str]:
    """
    Truncate a string to a maximum length.

    Examples:
        >>> truncate_string("a" * 150, max_length=20)
        'aaaaaaaaaaaaaaaaa...'
    """
    if s is None or len(s) <= max_length:
        return s
    return s[:max_length - len(suffix)] + suffix


def json_default(value: Any) -> Any:
    """
    json.dumps default hook for values psycopg2 returns.

    Datetimes, dates and times become ISO-8601 strings, Decimals and UUIDs
    become strings, and bytes become base64.
    """
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_jsonable(value: Any) -> Any:
    """Round-trip a value through JSON so it is safe for XCom and JSONB columns."""
    return json.loads(json.dumps(value, default=json_default))
