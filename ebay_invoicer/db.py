from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from ebay_invoicer.config import settings


class Base(DeclarativeBase):
    pass


engine = create_engine(settings.database_url, pool_pre_ping=True)

# Rows are handed between sessions (mapper -> repository -> invoice builder),
# so attributes must stay readable after commit.
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
