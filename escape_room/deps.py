from sqlmodel import Session
from . import crud
from .errors import StorageUnavailable


def get_session():
    # one session (and transaction scope) per request
    if crud.engine is None:
        raise StorageUnavailable()
    with Session(crud.engine) as session:
        yield session
