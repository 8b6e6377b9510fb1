from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from roombook.config import get_settings
from roombook.models import Base

DATABASE_URL = get_settings().database_url

engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db(bind=None):
    """Create all tables."""
    Base.metadata.create_all(bind=bind or engine)
