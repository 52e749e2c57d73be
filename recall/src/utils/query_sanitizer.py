"""
Recall - Query Sanitizer
=========================
The **only** sanctioned way to build LanceDB filter expressions.

LanceDB ``where()`` clauses are SQL text evaluated by DataFusion, so any
caller-supplied identifier that reaches one must first pass a strict
token grammar, and every literal is quote-escaped on top of that.
Nothing in Recall concatenates raw strings into a predicate.

All functions are pure.  Failure is always a rejection
(``ValidationError`` or ``False``), never a best-effort pass-through.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from recall.config.settings import settings
from recall.src.core.errors import ValidationError

# ── Identifier grammar ────────────────────────────────────────────────
# Canonical UUID, or the chat front-end's anonymous session token
# (``USER-`` + 6 upper-case alphanumerics + ``-`` + 4 digits).
_UUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_SESSION_TOKEN_RE = re.compile(r"USER-[A-Z0-9]{6}-[0-9]{4}")
_MAX_IDENTIFIER_LENGTH = 64

# Column names are checked against the allow-list *and* this shape
_COLUMN_RE = re.compile(r"[a-z_][a-z0-9_]*")
_DIGITS_RE = re.compile(r"[0-9]+")

# Columns a predicate may reference
FILTER_COLUMNS: frozenset[str] = frozenset({"owner_id", "conversation_id", "message_id", "role"})


def validate_identifier(value: object) -> bool:
    """Return ``True`` only for a well-formed owner / conversation / message id."""
    if not isinstance(value, str):
        return False
    if not value or len(value) > _MAX_IDENTIFIER_LENGTH:
        return False
    return bool(_UUID_RE.fullmatch(value) or _SESSION_TOKEN_RE.fullmatch(value))


def validate_identifiers(identifiers: Mapping[str, object]) -> tuple[bool, list[str]]:
    """
    Validate several identifiers at once.

    Returns
    -------
    tuple[bool, list[str]]
        ``(all_valid, invalid_field_names)``; field names keep input order.
    """
    invalid = [field for field, value in identifiers.items() if not validate_identifier(value)]
    return not invalid, invalid


def require_identifier(value: object, field: str) -> str:
    """Return *value* unchanged if valid, else raise ``ValidationError``."""
    if not validate_identifier(value):
        raise ValidationError(f"{field} is not a valid identifier", field=field, error_type="invalid_identifier")
    return value  # type: ignore[return-value]


def escape_literal(value: str) -> str:
    """Double every single quote so *value* cannot terminate a SQL string literal."""
    if not isinstance(value, str):
        raise ValidationError("escape_literal expects a string", field="value", error_type="invalid_type")
    return value.replace("'", "''")


def build_predicate(allowed_columns: Iterable[str], conditions: Mapping[str, object]) -> str:
    """
    Build an ``AND``-joined equality predicate.

    Every column must be in *allowed_columns* and every value must be a
    string.  An empty *conditions* mapping is rejected: there is no such
    thing as an unscoped predicate.

    Example::

        build_predicate(FILTER_COLUMNS, {"owner_id": oid})
        → "owner_id = '2f1c…'"
    """
    allowed = frozenset(allowed_columns)
    if not conditions:
        raise ValidationError("predicate requires at least one condition", field="conditions", error_type="required")

    clauses: list[str] = []
    for column, value in conditions.items():
        if not isinstance(column, str) or column not in allowed or not _COLUMN_RE.fullmatch(column):
            raise ValidationError(f"Invalid column name: {column}", field=str(column), error_type="invalid_column")
        if not isinstance(value, str):
            raise ValidationError(f"Column {column} value must be a string", field=column, error_type="invalid_type")
        clauses.append(f"{column} = '{escape_literal(value)}'")
    return " AND ".join(clauses)


def build_membership_clause(allowed_columns: Iterable[str], column: str, values: Iterable[object]) -> str:
    """
    Build ``column IN ('a', 'b', ...)`` over escaped string literals.

    Same column rules as ``build_predicate``; an empty *values* is
    rejected rather than rendered as a clause that matches nothing.
    """
    if not isinstance(column, str) or column not in frozenset(allowed_columns) or not _COLUMN_RE.fullmatch(column):
        raise ValidationError(f"Invalid column name: {column}", field=str(column), error_type="invalid_column")

    literals: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise ValidationError(f"Column {column} value must be a string", field=column, error_type="invalid_type")
        literals.append(f"'{escape_literal(value)}'")
    if not literals:
        raise ValidationError("membership clause requires at least one value", field=column, error_type="required")
    return f"{column} IN ({', '.join(literals)})"


def clamp_limit(value: object, max_value: int | None = None) -> int:
    """
    Coerce *value* to a positive ``int`` capped at *max_value*.

    Accepts ``int`` or a string of ASCII digits.  Booleans, floats,
    negative numbers, zero and anything else are rejected.
    """
    ceiling = max_value if max_value is not None else settings.QUERY_MAX_ROWS
    if isinstance(value, bool):
        number = None
    elif isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DIGITS_RE.fullmatch(value.strip()):
        number = int(value.strip())
    else:
        number = None

    if number is None or number < 1:
        raise ValidationError("LIMIT must be a positive integer", field="limit", error_type="out_of_range")
    return min(number, ceiling)
