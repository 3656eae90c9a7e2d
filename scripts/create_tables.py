"""
Create all CertHub tables in the configured database.

Usage:
  python scripts/create_tables.py

Uses SQLAlchemy's create_all(), so it is safe to run repeatedly; existing
tables are left untouched.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from certhub.config import settings
from certhub.db import Base, engine
from certhub.models import models  # noqa: F401


def create_tables():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    print(f"Creating tables on {engine.url.render_as_string(hide_password=True)} ...")
    Base.metadata.create_all(bind=engine)
    print("Tables created/verified:")
    for name in sorted(Base.metadata.tables):
        print(f"  - {name}")


if __name__ == "__main__":
    create_tables()
