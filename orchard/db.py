"""
Persistence port for gardens and trees, with in-memory, SQL and flat JSON
file implementations.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from orchard.errors import ConflictError, NotFoundError, StorageError

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for garden and tree storage."""

    def create_garden(self, name: str, rows: int, cols: int) -> "GardenRecord":
        ...

    def get_garden(self, name: str) -> Optional["GardenRecord"]:
        ...

    def list_gardens(self) -> list["GardenRecord"]:
        ...

    def delete_garden(self, name: str) -> bool:
        ...

    def get_tree(self, garden_id: int, row: int, col: int) -> Optional["TreeRecord"]:
        ...

    def list_trees(self, garden_id: int) -> list["TreeRecord"]:
        ...

    def upsert_tree(
        self,
        garden_id: int,
        row: int,
        col: int,
        *,
        variety: str,
        status: str,
        notes: str,
        images: list[str],
        harvest_info: list,
    ) -> "TreeRecord":
        ...

    def count_gardens(self) -> int:
        ...

    def close(self) -> None:
        ...


@dataclass
class TreeRecord:
    garden_id: int
    row: int
    col: int
    variety: str = ""
    status: str = ""
    notes: str = ""
    images: list[str] = field(default_factory=list)
    harvest_info: list = field(default_factory=list)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "row": self.row,
            "col": self.col,
            "variety": self.variety,
            "status": self.status,
            "notes": self.notes,
            "images": list(self.images),
            "harvestInfo": list(self.harvest_info),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, garden_id: int, payload: dict) -> "TreeRecord":
        now = time.time()
        return cls(
            garden_id=garden_id,
            row=int(payload["row"]),
            col=int(payload["col"]),
            variety=payload.get("variety") or "",
            status=payload.get("status") or "",
            notes=payload.get("notes") or "",
            images=list(payload.get("images") or []),
            harvest_info=list(payload.get("harvestInfo") or []),
            created_at=payload.get("createdAt", now),
            updated_at=payload.get("updatedAt", now),
        )


@dataclass
class GardenRecord:
    id: int
    name: str
    rows: int
    cols: int
    created_at: float = field(default_factory=lambda: time.time())
    trees: list[TreeRecord] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rows": self.rows,
            "cols": self.cols,
            "createdAt": self.created_at,
            "trees": [tree.as_dict() for tree in self.trees],
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "GardenRecord":
        garden_id = int(payload["id"])
        return cls(
            id=garden_id,
            name=payload["name"],
            rows=int(payload["rows"]),
            cols=int(payload["cols"]),
            created_at=payload.get("createdAt", time.time()),
            trees=[
                TreeRecord.from_dict(garden_id, tree)
                for tree in payload.get("trees") or []
            ],
        )


def _newest_first(gardens: list[GardenRecord]) -> list[GardenRecord]:
    return sorted(gardens, key=lambda g: (g.created_at, g.id), reverse=True)


def _copy_tree(tree: TreeRecord) -> TreeRecord:
    return replace(
        tree, images=list(tree.images), harvest_info=list(tree.harvest_info)
    )


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.gardens: Dict[str, GardenRecord] = {}
        self.trees: Dict[int, Dict[tuple[int, int], TreeRecord]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def create_garden(self, name: str, rows: int, cols: int) -> GardenRecord:
        with self._lock:
            if name in self.gardens:
                raise ConflictError(f"Garden {name!r} already exists")
            record = GardenRecord(id=self._next_id, name=name, rows=rows, cols=cols)
            self._next_id += 1
            self.gardens[name] = record
            self.trees[record.id] = {}
            return replace(record, trees=[])

    def get_garden(self, name: str) -> Optional[GardenRecord]:
        with self._lock:
            record = self.gardens.get(name)
            return replace(record, trees=[]) if record else None

    def list_gardens(self) -> list[GardenRecord]:
        with self._lock:
            gardens = [
                replace(
                    garden,
                    trees=[_copy_tree(t) for t in self.trees[garden.id].values()],
                )
                for garden in self.gardens.values()
            ]
        return _newest_first(gardens)

    def delete_garden(self, name: str) -> bool:
        with self._lock:
            record = self.gardens.get(name)
            if not record:
                return False
            self.trees.pop(record.id, None)
            del self.gardens[name]
            return True

    def get_tree(self, garden_id: int, row: int, col: int) -> Optional[TreeRecord]:
        with self._lock:
            tree = self.trees.get(garden_id, {}).get((row, col))
            return _copy_tree(tree) if tree else None

    def list_trees(self, garden_id: int) -> list[TreeRecord]:
        with self._lock:
            return [_copy_tree(t) for t in self.trees.get(garden_id, {}).values()]

    def upsert_tree(
        self,
        garden_id: int,
        row: int,
        col: int,
        *,
        variety: str,
        status: str,
        notes: str,
        images: list[str],
        harvest_info: list,
    ) -> TreeRecord:
        with self._lock:
            cells = self.trees.get(garden_id)
            if cells is None:
                raise NotFoundError(f"Garden id {garden_id} not found")
            now = time.time()
            existing = cells.get((row, col))
            record = TreeRecord(
                garden_id=garden_id,
                row=row,
                col=col,
                variety=variety,
                status=status,
                notes=notes,
                images=list(images),
                harvest_info=list(harvest_info),
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            cells[(row, col)] = record
            return _copy_tree(record)

    def count_gardens(self) -> int:
        return len(self.gardens)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.gardens.clear()
            self.trees.clear()
            self._next_id = 1

    def close(self) -> None:
        pass


@contextmanager
def _translate_store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store failure during %s", operation)
        raise StorageError(f"{operation} failed") from exc


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        with _translate_store_errors("schema setup"):
            self.engine = create_engine(
                database_url,
                future=True,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
            if self.engine.dialect.name == "sqlite":
                event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
            self.Session = sessionmaker(
                bind=self.engine, class_=Session, expire_on_commit=False, future=True
            )
            Base.metadata.create_all(self.engine)

    def _to_garden_record(self, garden: "GardenRow") -> GardenRecord:
        return GardenRecord(
            id=garden.id,
            name=garden.name,
            rows=garden.rows,
            cols=garden.cols,
            created_at=garden.created_at,
        )

    def _to_tree_record(self, tree: "TreeRow") -> TreeRecord:
        return TreeRecord(
            garden_id=tree.garden_id,
            row=tree.row,
            col=tree.col,
            variety=tree.variety or "",
            status=tree.status or "",
            notes=tree.notes or "",
            images=list(tree.images or []),
            harvest_info=list(tree.harvest_info or []),
            created_at=tree.created_at,
            updated_at=tree.updated_at,
        )

    def _find_garden(self, session: Session, name: str) -> Optional["GardenRow"]:
        stmt = select(GardenRow).where(GardenRow.name == name)
        return session.execute(stmt).scalar_one_or_none()

    def _find_tree(
        self, session: Session, garden_id: int, row: int, col: int
    ) -> Optional["TreeRow"]:
        stmt = select(TreeRow).where(
            TreeRow.garden_id == garden_id,
            TreeRow.row == row,
            TreeRow.col == col,
        )
        return session.execute(stmt).scalar_one_or_none()

    def create_garden(self, name: str, rows: int, cols: int) -> GardenRecord:
        with _translate_store_errors("create_garden"), self.Session() as session:
            garden = GardenRow(name=name, rows=rows, cols=cols, created_at=time.time())
            session.add(garden)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(f"Garden {name!r} already exists") from exc
            session.refresh(garden)
            return self._to_garden_record(garden)

    def get_garden(self, name: str) -> Optional[GardenRecord]:
        with _translate_store_errors("get_garden"), self.Session() as session:
            garden = self._find_garden(session, name)
            return self._to_garden_record(garden) if garden else None

    def list_gardens(self) -> list[GardenRecord]:
        with _translate_store_errors("list_gardens"), self.Session() as session:
            gardens = session.execute(
                select(GardenRow).order_by(
                    GardenRow.created_at.desc(), GardenRow.id.desc()
                )
            ).scalars().all()
            trees = session.execute(
                select(TreeRow).order_by(TreeRow.id.asc())
            ).scalars().all()
            by_garden: Dict[int, list[TreeRecord]] = {}
            for tree in trees:
                by_garden.setdefault(tree.garden_id, []).append(
                    self._to_tree_record(tree)
                )
            results: list[GardenRecord] = []
            for garden in gardens:
                record = self._to_garden_record(garden)
                record.trees = by_garden.get(garden.id, [])
                results.append(record)
            return results

    def delete_garden(self, name: str) -> bool:
        with _translate_store_errors("delete_garden"), self.Session() as session:
            garden = self._find_garden(session, name)
            if not garden:
                return False
            # Trees go first so no statement ever leaves orphans behind.
            session.execute(delete(TreeRow).where(TreeRow.garden_id == garden.id))
            session.delete(garden)
            session.commit()
            return True

    def get_tree(self, garden_id: int, row: int, col: int) -> Optional[TreeRecord]:
        with _translate_store_errors("get_tree"), self.Session() as session:
            tree = self._find_tree(session, garden_id, row, col)
            return self._to_tree_record(tree) if tree else None

    def list_trees(self, garden_id: int) -> list[TreeRecord]:
        with _translate_store_errors("list_trees"), self.Session() as session:
            rows = session.execute(
                select(TreeRow)
                .where(TreeRow.garden_id == garden_id)
                .order_by(TreeRow.id.asc())
            ).scalars().all()
            return [self._to_tree_record(tree) for tree in rows]

    def upsert_tree(
        self,
        garden_id: int,
        row: int,
        col: int,
        *,
        variety: str,
        status: str,
        notes: str,
        images: list[str],
        harvest_info: list,
    ) -> TreeRecord:
        values = {
            "variety": variety,
            "status": status,
            "notes": notes,
            "images": list(images),
            "harvest_info": list(harvest_info),
        }
        with _translate_store_errors("upsert_tree"), self.Session() as session:
            if session.get(GardenRow, garden_id) is None:
                raise NotFoundError(f"Garden id {garden_id} not found")
            now = time.time()
            tree = self._find_tree(session, garden_id, row, col)
            if tree:
                for key, value in values.items():
                    setattr(tree, key, value)
                tree.updated_at = now
            else:
                tree = TreeRow(
                    garden_id=garden_id,
                    row=row,
                    col=col,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
                session.add(tree)
            try:
                session.commit()
            except IntegrityError:
                # Another writer inserted the same cell (or removed the garden)
                # between our read and the commit.
                session.rollback()
                if session.get(GardenRow, garden_id) is None:
                    raise NotFoundError(f"Garden id {garden_id} not found")
                tree = self._find_tree(session, garden_id, row, col)
                for key, value in values.items():
                    setattr(tree, key, value)
                tree.updated_at = now
                session.commit()
            session.refresh(tree)
            return self._to_tree_record(tree)

    def count_gardens(self) -> int:
        with _translate_store_errors("count_gardens"), self.Session() as session:
            return session.execute(select(func.count(GardenRow.id))).scalar_one()

    def close(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class JsonFileDbClient:
    """
    Flat-file implementation keeping every garden, with its trees nested
    inside, in a single JSON document. Each operation rewrites the whole file
    through an atomic rename.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.RLock()
        with self._lock:
            if not self.path.exists():
                self._write({"nextGardenId": 1, "gardens": []})

    def _read(self) -> dict:
        try:
            state = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {"nextGardenId": 1, "gardens": []}
        except (OSError, ValueError) as exc:
            logger.exception("Could not read data file %s", self.path)
            raise StorageError("reading the data file failed") from exc
        state.setdefault("nextGardenId", 1)
        state.setdefault("gardens", [])
        return state

    def _write(self, state: dict) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8"
            )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.exception("Could not write data file %s", self.path)
            raise StorageError("writing the data file failed") from exc

    def _load_gardens(self) -> list[GardenRecord]:
        try:
            return [GardenRecord.from_dict(doc) for doc in self._read()["gardens"]]
        except (KeyError, TypeError, ValueError) as exc:
            logger.exception("Malformed garden document in %s", self.path)
            raise StorageError("the data file is malformed") from exc

    def create_garden(self, name: str, rows: int, cols: int) -> GardenRecord:
        with self._lock:
            state = self._read()
            if any(doc.get("name") == name for doc in state["gardens"]):
                raise ConflictError(f"Garden {name!r} already exists")
            record = GardenRecord(
                id=int(state["nextGardenId"]), name=name, rows=rows, cols=cols
            )
            state["nextGardenId"] = record.id + 1
            state["gardens"].append(record.as_dict())
            self._write(state)
            return record

    def get_garden(self, name: str) -> Optional[GardenRecord]:
        with self._lock:
            for garden in self._load_gardens():
                if garden.name == name:
                    return replace(garden, trees=[])
        return None

    def list_gardens(self) -> list[GardenRecord]:
        with self._lock:
            gardens = self._load_gardens()
        return _newest_first(gardens)

    def delete_garden(self, name: str) -> bool:
        with self._lock:
            state = self._read()
            remaining = [doc for doc in state["gardens"] if doc.get("name") != name]
            if len(remaining) == len(state["gardens"]):
                return False
            state["gardens"] = remaining
            self._write(state)
            return True

    def get_tree(self, garden_id: int, row: int, col: int) -> Optional[TreeRecord]:
        for tree in self.list_trees(garden_id):
            if tree.row == row and tree.col == col:
                return tree
        return None

    def list_trees(self, garden_id: int) -> list[TreeRecord]:
        with self._lock:
            for garden in self._load_gardens():
                if garden.id == garden_id:
                    return garden.trees
        return []

    def upsert_tree(
        self,
        garden_id: int,
        row: int,
        col: int,
        *,
        variety: str,
        status: str,
        notes: str,
        images: list[str],
        harvest_info: list,
    ) -> TreeRecord:
        with self._lock:
            state = self._read()
            doc = next(
                (g for g in state["gardens"] if g.get("id") == garden_id), None
            )
            if doc is None:
                raise NotFoundError(f"Garden id {garden_id} not found")
            trees = doc.setdefault("trees", [])
            now = time.time()
            index = next(
                (
                    i
                    for i, tree in enumerate(trees)
                    if tree.get("row") == row and tree.get("col") == col
                ),
                None,
            )
            record = TreeRecord(
                garden_id=garden_id,
                row=row,
                col=col,
                variety=variety,
                status=status,
                notes=notes,
                images=list(images),
                harvest_info=list(harvest_info),
                created_at=trees[index].get("createdAt", now) if index is not None else now,
                updated_at=now,
            )
            if index is None:
                trees.append(record.as_dict())
            else:
                trees[index] = record.as_dict()
            self._write(state)
            return record

    def count_gardens(self) -> int:
        with self._lock:
            return len(self._read()["gardens"])

    def close(self) -> None:
        pass


Base = declarative_base()


class GardenRow(Base):
    __tablename__ = "gardens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    rows = Column(Integer, nullable=False)
    cols = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


class TreeRow(Base):
    __tablename__ = "trees"
    __table_args__ = (UniqueConstraint("garden_id", "row", "col"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    garden_id = Column(
        Integer,
        ForeignKey("gardens.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row = Column(Integer, nullable=False)
    col = Column(Integer, nullable=False)
    variety = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    images = Column(JSON, nullable=False)
    harvest_info = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
