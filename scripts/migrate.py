#!/usr/bin/env python3
"""Create the Neo4j constraints and indexes the contact store relies on.

Run from repo root with .env (NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD).
Idempotent.
"""
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO_ROOT / "src"))

from dotenv import load_dotenv  # noqa: E402
from neo4j import GraphDatabase  # noqa: E402

from reconcile.infrastructure import ensure_contact_schema  # noqa: E402

load_dotenv(REPO_ROOT / ".env")


def main() -> int:
    uri = os.environ.get("NEO4J_URI", "bolt://localhost:7687").strip()
    user = os.environ.get("NEO4J_USER", "neo4j").strip()
    password = os.environ.get("NEO4J_PASSWORD", "password").strip()
    driver = GraphDatabase.driver(uri, auth=(user, password))
    try:
        print("Creating constraints and indexes...")
        ensure_contact_schema(driver)
        print("Migration completed successfully!")
        return 0
    finally:
        driver.close()


if __name__ == "__main__":
    sys.exit(main())
