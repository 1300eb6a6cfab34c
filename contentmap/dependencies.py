"""FastAPI dependencies shared by the routers."""

from pathlib import Path
from typing import Iterator

from fastapi import Depends, HTTPException

from contentmap.config import settings
from contentmap.services.errors import StoreError
from contentmap.services.page_store import PageStore


def get_db_path() -> Path:
    return settings.db_path


def open_store(path: Path, must_exist: bool) -> PageStore:
    """Open the page store, answering 409 when it is missing or unreadable."""
    try:
        return PageStore.open(path, must_exist=must_exist)
    except StoreError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def existing_store(path: Path = Depends(get_db_path)) -> Iterator[PageStore]:
    store = open_store(path, must_exist=True)
    try:
        yield store
    finally:
        store.close()
