from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from ticketa.config import settings

connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=connect_args,
    echo=False
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """Yield a database session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_session_factory():
    """Session factory for websocket handlers, which open one short session per unit of work"""
    return SessionLocal
