"""
SQL VALIDATOR MODULE - Static safety checks before anything touches a database

Checks (all of them run, errors accumulate):
    1. not empty
    2. no blacklisted keyword (substring match, case-insensitive)
    3. no known injection pattern
    4. balanced parentheses
    5. starts with SELECT

This is a keyword/pattern heuristic, not a SQL parser. It rejects harmless
text that merely contains a keyword (a column named `update_count`, a
`created_at` column) and can be fooled by obfuscated input. The read-only
connection used for execution is the second line of defence.
"""

import re
from typing import List

from querylens.core.schemas import SqlValidationResult

DANGEROUS_KEYWORDS = (
    "DROP",
    "DELETE",
    "UPDATE",
    "INSERT",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
)

SQL_INJECTION_PATTERNS = (
    re.compile(r";\s*DROP\s+TABLE", re.IGNORECASE),
    re.compile(r";\s*DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
    re.compile(r"OR\s+1\s*=\s*1", re.IGNORECASE),
    re.compile(r"'\s*OR\s*'", re.IGNORECASE),
)

EMPTY_QUERY_ERROR = "SQL query cannot be empty"
INJECTION_ERROR = "Potential SQL injection detected"
UNBALANCED_PARENTHESES_ERROR = "Unbalanced parentheses in SQL query"
SELECT_ONLY_ERROR = "Only SELECT queries are allowed"


def are_parentheses_balanced(sql: str) -> bool:
    depth = 0
    for char in sql:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def validate(sql: str) -> SqlValidationResult:
    """
    Validate a candidate SQL string.

    Example:
        validate("SELECT * FROM t")  -> is_valid=True
        validate("DROP TABLE t")     -> is_valid=False, errors mention DROP
    """
    if sql is None or not sql.strip():
        return SqlValidationResult(is_valid=False, errors=[EMPTY_QUERY_ERROR])

    errors: List[str] = []
    sql_upper = sql.strip().upper()

    for keyword in DANGEROUS_KEYWORDS:
        if keyword in sql_upper:
            errors.append(
                f"Dangerous SQL keyword detected: {keyword}. Only SELECT queries are allowed."
            )

    for pattern in SQL_INJECTION_PATTERNS:
        if pattern.search(sql):
            errors.append(INJECTION_ERROR)

    if not are_parentheses_balanced(sql):
        errors.append(UNBALANCED_PARENTHESES_ERROR)

    if not sql_upper.startswith("SELECT"):
        errors.append(SELECT_ONLY_ERROR)

    return SqlValidationResult(is_valid=not errors, errors=errors)
