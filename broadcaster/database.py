from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from broadcaster.config import DATABASE_URL

# Workers write results from several threads; SQLite needs the same-thread check off.
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass
