import pytest

from querylens.ai_feature import prompts
from querylens.ai_feature.service import clean_sql, resolve_request_id
from querylens.core.schemas import RelevantSchema

ORDERS = RelevantSchema(
    schema_name="orders", schema_description="orders table with id, customer_id, total"
)
CUSTOMERS = RelevantSchema(
    schema_name="customers", schema_description="customers table with id, name, email"
)


def test_system_prompt_names_database_type_and_rules():
    prompt = prompts.build_system_prompt("postgresql")
    assert "postgresql database" in prompt
    assert "SELECT queries only" in prompt
    assert "no markdown formatting" in prompt


def test_context_lists_schemas_in_order():
    context = prompts.build_context_string([ORDERS, CUSTOMERS])
    assert context.startswith("Available database schemas:")
    assert context.index("1. Schema: orders") < context.index("2. Schema: customers")
    assert "   Description: orders table with id, customer_id, total" in context


def test_context_without_schemas():
    assert prompts.build_context_string([]) == "No schema information available."


def test_user_prompt_with_and_without_context():
    with_context = prompts.build_user_prompt("show me all orders", [ORDERS])
    assert with_context.startswith("Database Schema Information:")
    assert "Question: show me all orders" in with_context

    without_context = prompts.build_user_prompt("show me all orders", [])
    assert without_context.startswith("Question: show me all orders")
    assert "Database Schema Information" not in without_context


def test_explanation_mentions_question_schemas_and_sql():
    explanation = prompts.build_explanation("show me all orders", "SELECT * FROM orders", [ORDERS])
    assert 'Generated SQL for: "show me all orders"' in explanation
    assert "Used schema context from: orders" in explanation
    assert explanation.endswith("SQL Query:\nSELECT * FROM orders")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```sql\nSELECT 1\n```", "SELECT 1"),
        ("```SQL\nSELECT 1```", "SELECT 1"),
        ("```\nSELECT id FROM orders\n```", "SELECT id FROM orders"),
        ('"SELECT 1"', "SELECT 1"),
        ("'SELECT 1'", "SELECT 1"),
        ("  SELECT 1  ", "SELECT 1"),
        ("SELECT 'a'", "SELECT 'a'"),
        (None, ""),
    ],
)
def test_clean_sql(raw, expected):
    assert clean_sql(raw) == expected


def test_client_request_id_is_kept():
    assert resolve_request_id("abc-123") == "abc-123"


def test_request_id_is_generated_when_missing():
    first = resolve_request_id(None)
    second = resolve_request_id("  ")
    assert len(first) == 36
    assert first != second
