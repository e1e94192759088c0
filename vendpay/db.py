from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from vendpay import config

# Tables must be registered on SQLModel.metadata before create_all
from vendpay import models  # noqa: F401


def make_engine(database_url: str = None, **kwargs) -> Engine:
    url = database_url or config.DATABASE_URL
    if url.startswith("sqlite"):
        # Sessions are opened per request, possibly from worker threads
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=False, **kwargs)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)
