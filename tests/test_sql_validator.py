import pytest

from querylens.ai_feature.sql_validator import (
    EMPTY_QUERY_ERROR,
    INJECTION_ERROR,
    SELECT_ONLY_ERROR,
    UNBALANCED_PARENTHESES_ERROR,
    are_parentheses_balanced,
    validate,
)


def test_plain_select_is_valid():
    result = validate("SELECT * FROM orders WHERE total > 10")
    assert result.is_valid
    assert result.errors == []


def test_select_is_case_insensitive_and_trimmed():
    assert validate("   select id from orders  ").is_valid


@pytest.mark.parametrize("sql", [None, "", "   \n\t"])
def test_empty_query_has_single_error(sql):
    result = validate(sql)
    assert not result.is_valid
    assert result.errors == [EMPTY_QUERY_ERROR]


def test_drop_is_rejected_with_keyword_and_select_errors():
    result = validate("DROP TABLE orders")
    assert not result.is_valid
    assert any("DROP" in error for error in result.errors)
    assert SELECT_ONLY_ERROR in result.errors


def test_keyword_inside_select_is_still_rejected():
    """Substring heuristic: a column named update_count trips the UPDATE check"""
    result = validate("SELECT update_count FROM stats")
    assert not result.is_valid
    assert any("UPDATE" in error for error in result.errors)


def test_injection_patterns_are_detected():
    result = validate("SELECT * FROM users WHERE name = 'a' OR 1=1")
    assert not result.is_valid
    assert INJECTION_ERROR in result.errors

    result = validate("SELECT id FROM a UNION SELECT password FROM users")
    assert INJECTION_ERROR in result.errors


def test_stacked_drop_reports_every_problem():
    result = validate("SELECT 1; DROP TABLE orders")
    assert not result.is_valid
    assert any("DROP" in error for error in result.errors)
    assert INJECTION_ERROR in result.errors


def test_unbalanced_parentheses():
    result = validate("SELECT COUNT(* FROM orders")
    assert not result.is_valid
    assert result.errors == [UNBALANCED_PARENTHESES_ERROR]


@pytest.mark.parametrize(
    "sql, expected",
    [
        ("SELECT (1)", True),
        ("SELECT ((1) + (2))", True),
        ("SELECT (1", False),
        ("SELECT )1(", False),
    ],
)
def test_parentheses_balance(sql, expected):
    assert are_parentheses_balanced(sql) is expected


def test_non_select_statement_is_rejected():
    result = validate("WITH x AS (SELECT 1) SELECT * FROM x")
    assert not result.is_valid
    assert result.errors == [SELECT_ONLY_ERROR]
