from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"

DEMAND_LETTER_TEMPLATE = """{{firm.name}}

{{today}}

Dear Sirs,

Our client: {{client.name}}
Our reference: {{matter.reference}}
Defendant: {{findings.defendant_name}}

LETTER OF CLAIM

{{AI:liability_narrative}}

{{AI:injury_narrative}}

{{AI:damages_narrative}}

We look forward to hearing from you within 21 days.

Yours faithfully,

{{feeEarner.name}}
{{firm.name}}
"""

CLIENT_CARE_TEMPLATE = """Dear {{client.firstName}},

Re: {{matter.title}} ({{matter.reference}})

Thank you for instructing {{firm.name}}. {{feeEarner.name}} will have conduct of your matter.

Yours sincerely,

{{feeEarner.name}}
"""


def _load_database_url(cli_url: Optional[str]) -> str:
    if cli_url:
        return cli_url
    env_url = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not env_url:
        raise RuntimeError("No --url, DATABASE_URL or SQLALCHEMY_DATABASE_URL configured.")
    return env_url


def _alembic_config(database_url: str) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def _reset_postgres_db(database_url: str, db_name_override: Optional[str]) -> str:
    url = make_url(database_url)
    target_db = db_name_override or url.database
    if not target_db:
        raise RuntimeError("Postgres URL is missing a database name.")

    maintenance_db = url.set(database="postgres")
    engine = create_engine(maintenance_db, future=True, isolation_level="AUTOCOMMIT")
    try:
        with engine.connect() as conn:
            conn.execute(
                text(
                    """
                    SELECT pg_terminate_backend(pid)
                    FROM pg_stat_activity
                    WHERE datname = :db_name AND pid <> pg_backend_pid();
                    """
                ),
                {"db_name": target_db},
            )
            conn.execute(text(f"DROP DATABASE IF EXISTS \"{target_db}\""))
            conn.execute(text(f"CREATE DATABASE \"{target_db}\""))
    finally:
        engine.dispose()

    return url.set(database=target_db).render_as_string(hide_password=False)


def _reset_sqlite_db(database_url: str) -> str:
    url = make_url(database_url)
    if url.database and url.database != ":memory:":
        db_path = Path(url.database)
        if db_path.exists():
            db_path.unlink()
    return database_url


def _seed_demo_casework(database_url: str) -> None:
    """One firm with an admin, a personal injury matter, findings and two templates."""
    os.environ.setdefault("DATABASE_URL", database_url)
    from backend.app.models import (
        Client,
        Firm,
        FirmMembership,
        Matter,
        PipelineFinding,
        Template,
        User,
    )
    from backend.app.templates.render import extract_merge_fields, merge_field_schema

    engine = create_engine(database_url, future=True)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        firm = Firm(name="Harrison & Clarke", slug="harrison-clarke")
        user = User(email="james@harrison-clarke.test", name="James Clarke")
        session.add_all([firm, user])
        session.flush()
        session.add(FirmMembership(firm_id=firm.id, user_id=user.id, role="admin"))

        client = Client(
            firm_id=firm.id,
            type="individual",
            first_name="John",
            last_name="Smith",
            address_line1="123 Main St",
            city="London",
            postcode="SW1A 1AA",
        )
        session.add(client)
        session.flush()
        matter = Matter(
            firm_id=firm.id,
            client_id=client.id,
            fee_earner_id=user.id,
            reference="PI-0001",
            title="Smith v Jones Transport Ltd",
            practice_area="personal_injury",
            sub_type="rta",
        )
        session.add(matter)
        session.flush()

        for field_key, value, category in (
            ("defendant_name", "Jones Transport Ltd", "parties"),
            ("incident_date", "2024-06-15", "incident"),
            ("injury_description", "Whiplash and a fractured wrist", "injuries"),
            ("total_demand", "£50,000", "damages"),
        ):
            session.add(
                PipelineFinding(
                    firm_id=firm.id,
                    matter_id=matter.id,
                    field_key=field_key,
                    label=field_key.replace("_", " ").title(),
                    value=value,
                    confidence=0.9,
                    status="accepted",
                    category_key=category,
                )
            )

        for owner_id, name, content in (
            (None, "Letter of Claim", DEMAND_LETTER_TEMPLATE),
            (firm.id, "Client Care Letter", CLIENT_CARE_TEMPLATE),
        ):
            session.add(
                Template(
                    firm_id=owner_id,
                    name=name,
                    type="document",
                    category="correspondence",
                    content=content,
                    merge_fields=merge_field_schema(extract_merge_fields(content)),
                    created_by_id=user.id,
                )
            )
        session.commit()
    finally:
        session.close()
        engine.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Reset the development database.")
    parser.add_argument("--url", help="Override the database URL.")
    parser.add_argument("--db-name", help="Override the database name (Postgres only).")
    parser.add_argument("--yes", action="store_true", help="Confirm destructive reset.")
    parser.add_argument("--seed", action="store_true", help="Seed a demo firm, matter and templates.")
    args = parser.parse_args(argv)

    if not args.yes:
        print("Refusing to reset database without --yes.")
        return 1

    database_url = _load_database_url(args.url)
    url = make_url(database_url)

    if url.get_backend_name().startswith("postgres"):
        database_url = _reset_postgres_db(database_url, args.db_name)
    elif url.get_backend_name().startswith("sqlite"):
        database_url = _reset_sqlite_db(database_url)
    else:
        print(f"Unsupported database backend: {url.get_backend_name()}")
        return 1

    command.upgrade(_alembic_config(database_url), "head")

    if args.seed:
        _seed_demo_casework(database_url)

    print("DONE")
    print(f"Database URL: {make_url(database_url).render_as_string(hide_password=True)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
