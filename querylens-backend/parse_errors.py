"""
QueryLens - Parse Error Taxonomy
================================

Every failure the extraction layer can report to a caller.

FATAL (raised, abort the whole request):
- EmptyInputError: SQL or DDL text is empty / whitespace-only
- SQLSyntaxError:  the text never became an AST

NON-FATAL (recorded on the QueryFact, never raised):
- UnsupportedConstructWarning: a construct was parsed but is not modeled
  (e.g. a non-equi join predicate). The rest of the statement is still
  extracted.

Both fatal errors are caller errors; the HTTP layer maps them to 400.
"""

import re
from typing import Any, Dict, Optional


class QueryLensError(Exception):
    """Base class for all QueryLens extraction failures."""


class EmptyInputError(QueryLensError):
    """Raised when SQL or DDL input is empty or whitespace-only."""

    def __init__(self, what: str = "SQL query"):
        self.what = what
        super().__init__(f"{what} cannot be empty")


class SQLSyntaxError(QueryLensError):
    """
    Raised when the underlying parser rejects the input.

    Attributes:
        message: The parser's message, verbatim
        line: 1-based line of the offending token (if known)
        column: 1-based column of the offending token (if known)
        source: "SQL" or "DDL"
    """

    # Fallback for parser messages that only carry the position in text
    _LOCATION_PATTERN = re.compile(r'line\s*:?\s*(\d+)\s*,\s*col(?:umn)?\s*:?\s*(\d+)', re.IGNORECASE)

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        source: str = "SQL",
    ):
        if line is None:
            match = self._LOCATION_PATTERN.search(message)
            if match:
                line, column = int(match.group(1)), int(match.group(2))

        self.message = message
        self.line = line
        self.column = column
        self.source = source

        text = f"Failed to parse {source}: {message}"
        if line is not None and f"line {line}" not in message.lower():
            text += f" (line {line}, column {column})"
        super().__init__(text)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the ParserError wire shape."""
        data: Dict[str, Any] = {"type": "syntax", "message": str(self)}
        if self.line is not None:
            data["location"] = {"line": self.line, "column": self.column}
        return data


class UnsupportedConstructWarning(UserWarning):
    """
    A recognized construct that extraction deliberately does not model.

    Collected on QueryFact.warnings and serialized under "parseErrors".
    """

    def __init__(self, message: str, construct: str = ""):
        self.message = message
        self.construct = construct
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "unsupported", "message": self.message}
