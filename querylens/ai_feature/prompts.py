"""
PROMPT MODULE - Build the conversation sent to the generation service

    system: role + safety rules for the target database type
    user:   retrieved schema context + the question

Without the schema context the model guesses table and column names, with it
the SQL uses the names that actually exist.
"""

from typing import List, Sequence

from querylens.core.schemas import RelevantSchema


def build_system_prompt(database_type: str) -> str:
    return (
        f"You are an expert SQL query generator for {database_type} database. "
        "Convert natural language questions into valid SQL SELECT queries only. "
        "Do not include DROP, DELETE, UPDATE, INSERT, or any data modification commands. "
        "Return ONLY the SQL query, no explanations, no markdown formatting, no code blocks. "
        "The SQL should be clean and ready to execute."
    )


def build_context_string(schemas: Sequence[RelevantSchema]) -> str:
    """
    Format retrieved schemas as a numbered list.

    Example output:
        Available database schemas:

        1. Schema: orders
           Description: orders table with id, customer_id, total
    """
    if not schemas:
        return "No schema information available."

    lines: List[str] = ["Available database schemas:", ""]
    for position, schema in enumerate(schemas, start=1):
        lines.append(f"{position}. Schema: {schema.schema_name}")
        lines.append(f"   Description: {schema.schema_description}")
        lines.append("")
    return "\n".join(lines)


def build_user_prompt(question: str, schemas: Sequence[RelevantSchema]) -> str:
    parts: List[str] = []

    if schemas:
        parts.append("Database Schema Information:")
        parts.append(build_context_string(schemas))

    parts.append(f"Question: {question}")
    parts.append("")
    parts.append(
        "Generate a SQL SELECT query for this question. "
        "Use the schema information provided above."
    )
    return "\n".join(parts)


def build_explanation(question: str, sql: str, schemas: Sequence[RelevantSchema]) -> str:
    """Short human-readable summary attached to every conversion result."""
    explanation = f'Generated SQL for: "{question}"\n\n'

    if schemas:
        explanation += "Used schema context from: "
        explanation += ", ".join(schema.schema_name for schema in schemas)
        explanation += "\n"

    explanation += f"\nSQL Query:\n{sql}"
    return explanation
