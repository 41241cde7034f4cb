# app/services/batch_store.py
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings, get_settings
from app.errors import StoreError
from app.models import Base, BatchRecord
from app.schemas.batch import Batch

logger = logging.getLogger(__name__)


class BatchStore(Protocol):
    """
    Durable keyed storage for batches.

    The store never invents identities; callers hand it complete Batch
    objects. Any I/O failure surfaces as StoreError.
    """

    def get(self, batch_id: str) -> Optional[Batch]: ...

    def put(self, batch: Batch) -> None: ...

    def replace(self, batch: Batch) -> bool: ...

    def list(self) -> List[Batch]: ...

    def delete(self, batch_id: str) -> bool: ...

    def ping(self) -> None: ...


def _to_document(batch: Batch) -> dict:
    return batch.model_dump(mode="json", by_alias=True)


class SqlBatchStore:
    """BatchStore backed by the `batches` table."""

    def __init__(self, engine: Engine, create_schema: bool = True):
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        if create_schema:
            try:
                Base.metadata.create_all(bind=engine)
            except SQLAlchemyError as e:
                raise StoreError(f"Could not create batch schema: {e}") from e

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"Batch store failure: {e}") from e
        finally:
            db.close()

    def get(self, batch_id: str) -> Optional[Batch]:
        with self._session() as db:
            record = db.get(BatchRecord, batch_id)
            if record is None:
                return None
            return self._load(record)

    def put(self, batch: Batch) -> None:
        with self._session() as db:
            record = db.get(BatchRecord, batch.id)
            if record is None:
                record = BatchRecord(id=batch.id)
                db.add(record)
            self._fill(record, batch)

    def replace(self, batch: Batch) -> bool:
        with self._session() as db:
            record = db.get(BatchRecord, batch.id)
            if record is None:
                return False
            self._fill(record, batch)
            return True

    def list(self) -> List[Batch]:
        with self._session() as db:
            records = db.query(BatchRecord).order_by(BatchRecord.created_at).all()
            batches: List[Batch] = []
            for record in records:
                try:
                    batches.append(self._load(record))
                except StoreError as e:
                    logger.warning("Skipping corrupt batch row", extra={"batch_id": record.id, "error": str(e)})
            return batches

    def delete(self, batch_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(BatchRecord).filter_by(id=batch_id).delete()
            return deleted > 0

    def ping(self) -> None:
        with self._session() as db:
            db.execute(text("SELECT 1"))

    @staticmethod
    def _fill(record: BatchRecord, batch: Batch) -> None:
        record.name = batch.name
        record.status = batch.status.value
        record.created_at = batch.created_at.replace(tzinfo=None)
        record.document = _to_document(batch)

    @staticmethod
    def _load(record: BatchRecord) -> Batch:
        try:
            return Batch.model_validate(record.document)
        except PydanticValidationError as e:
            raise StoreError(f"Stored batch {record.id} is corrupt: {e}") from e


class JsonFileBatchStore:
    """
    BatchStore keeping one pretty-printed `<batch_id>.json` per batch.

    A process-wide lock makes replace's exists-then-write atomic with
    respect to delete.
    """

    def __init__(self, data_dir: str | os.PathLike):
        self._dir = Path(data_dir)
        self._lock = threading.Lock()
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Could not create data directory {self._dir}: {e}") from e

    @staticmethod
    def _is_safe_id(batch_id: str) -> bool:
        # Identities are generated server-side, but never trust a path segment
        return bool(batch_id) and not any(c in batch_id for c in "/\\") and not batch_id.startswith(".")

    def _path(self, batch_id: str) -> Path:
        return self._dir / f"{batch_id}.json"

    def get(self, batch_id: str) -> Optional[Batch]:
        if not self._is_safe_id(batch_id):
            return None
        try:
            raw = self._path(batch_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Could not read batch {batch_id}: {e}") from e

        try:
            return Batch.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise StoreError(f"Stored batch {batch_id} is corrupt: {e}") from e

    def put(self, batch: Batch) -> None:
        with self._lock:
            self._write(batch)

    def replace(self, batch: Batch) -> bool:
        with self._lock:
            if not self._path(batch.id).exists():
                return False
            self._write(batch)
            return True

    def list(self) -> List[Batch]:
        batches: List[Batch] = []
        try:
            paths = sorted(self._dir.glob("*.json"))
        except OSError as e:
            raise StoreError(f"Could not list batches: {e}") from e

        for path in paths:
            try:
                batch = self.get(path.stem)
            except StoreError as e:
                logger.warning("Skipping unreadable batch file", extra={"path": str(path), "error": str(e)})
                continue
            if batch is not None:
                batches.append(batch)
        return sorted(batches, key=lambda b: b.created_at)

    def delete(self, batch_id: str) -> bool:
        if not self._is_safe_id(batch_id):
            return False
        with self._lock:
            try:
                self._path(batch_id).unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StoreError(f"Could not delete batch {batch_id}: {e}") from e
            return True

    def ping(self) -> None:
        if not os.access(self._dir, os.W_OK):
            raise StoreError(f"Data directory {self._dir} is not writable")

    def _write(self, batch: Batch) -> None:
        path = self._path(batch.id)
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(_to_document(batch), indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StoreError(f"Could not write batch {batch.id}: {e}") from e


def build_batch_store(settings: Settings) -> BatchStore:
    if settings.BATCH_STORE_BACKEND == "file":
        return JsonFileBatchStore(settings.BATCH_DATA_DIR)

    from app.db.session import engine

    return SqlBatchStore(engine)


_store: Optional[BatchStore] = None


def get_batch_store() -> BatchStore:
    """FastAPI dependency; one store per process."""
    global _store
    if _store is None:
        _store = build_batch_store(get_settings())
    return _store
