"""
Подключение к реляционному хранилищу (SQLAlchemy)
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from habitsync.config import DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency FastAPI: сессия БД на время запроса"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all() -> None:
    """Создать таблицы (для разработки и тестов; в production - Alembic)"""
    # Импорт регистрирует модели в метаданных
    import habitsync.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
