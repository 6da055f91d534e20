#!/usr/bin/env python3
"""Emit SQL that links a Supabase user to the agency they operate.

Row level policies on labor request notifications only admit users listed in
``agencies.claimed_by``, so an owner has no inbox until this has been run.
"""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, agency_id: str, user_id: str | None, email: str | None, role: str) -> str:
    role_value = _quote_sql(role)
    agency_value = f"{_quote_sql(agency_id)}::uuid"

    if user_id:
        user_where = f"id = {_quote_sql(user_id)}::uuid"
        owner_value = f"{_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        user_where = f"email = {_quote_sql(email)}"
        owner_value = f"(select id from auth.users where email = {_quote_sql(email)})"

    return f"""-- Agency owner bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {user_where};

update agencies
set claimed_by = {owner_value}
where id = {agency_value};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL linking a Supabase user to an agency.")
    parser.add_argument("--agency-id", required=True, help="agencies.id (UUID) to claim")
    parser.add_argument(
        "--role",
        choices=["agency_owner", "admin"],
        default="agency_owner",
        help="Role to assign in auth.users.raw_app_meta_data.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    args = parser.parse_args()

    print(
        render_sql(
            agency_id=args.agency_id,
            user_id=args.user_id,
            email=args.email,
            role=args.role,
        )
    )


if __name__ == "__main__":
    main()
