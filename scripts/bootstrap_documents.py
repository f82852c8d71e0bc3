#!/usr/bin/env python3
"""Emit the SQL that prepares a Postgres database for the documents store."""

from __future__ import annotations

import argparse

from curator.services.interests import root_interests
from curator.services.repository import DOCUMENTS_DDL


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, seed_interests: bool) -> str:
    statements = ["-- curator documents store bootstrap SQL", DOCUMENTS_DDL.strip()]
    if seed_interests:
        statements.append("-- root interests (existing rows are left untouched)")
        for interest in root_interests():
            document = interest.to_document()
            payload = ", ".join(
                f"{_quote_sql(key)}, {_render_value(value)}" for key, value in document.items() if value is not None
            )
            statements.append(
                "insert into documents (collection, id, data)\n"
                f"values ('interests', {_quote_sql(interest.id)}, jsonb_build_object({payload}))\n"
                "on conflict (collection, id) do nothing;"
            )
    return "\n\n".join(statements) + "\n"


def _render_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        items = ", ".join(_quote_sql(str(item)) for item in value)
        return f"jsonb_build_array({items})"
    return _quote_sql(str(value))


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap the curator documents table.")
    parser.add_argument(
        "--seed-interests",
        action="store_true",
        help="Also insert the ten root interests",
    )
    args = parser.parse_args()
    print(render_sql(seed_interests=args.seed_interests))


if __name__ == "__main__":
    main()
