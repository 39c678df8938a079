"""
Synchronous client for the relational document store.

The client owns a single database connection. That handle is not safe for
concurrent use, so async code must reach it through ``MetadataGateway``.
"""

import logging
from typing import Any

from sqlalchemy import create_engine, false, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from library_dl.exceptions import DataSourceError
from library_dl.models.records import DocumentRef, LibraryInfo

from .schema import (
    documents,
    file_chunks,
    file_chunks_archived,
    files,
    folders,
    libraries,
    settings,
)

log = logging.getLogger(__name__)


def _document_count_column():
    """Correlated count of a library's non-deleted documents."""
    return (
        select(func.count(documents.c.ID))
        .select_from(documents.join(folders, documents.c.FolderId == folders.c.ID))
        .where(folders.c.LibraryId == libraries.c.ID, documents.c.Deleted == false())
        .correlate(libraries)
        .scalar_subquery()
        .label("document_count")
    )


def _to_library_info(row: Any) -> LibraryInfo:
    return LibraryInfo(
        id=row.ID,
        name=row.LibraryName or "",
        description=row.Description or "",
        document_count=row.document_count or 0,
    )


class LibraryStoreClient:
    """Reads libraries, documents, chunks and blobs from the document store."""

    def __init__(self, connection_url: str, engine: Engine | None = None):
        self.connection_url = connection_url
        if engine is None:
            connect_args = {}
            if connection_url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            engine = create_engine(connection_url, connect_args=connect_args)
        self._engine = engine
        self._conn: Connection | None = None

    def _connection(self) -> Connection:
        if self._conn is None or self._conn.closed:
            try:
                self._conn = self._engine.connect()
            except SQLAlchemyError as e:
                raise DataSourceError(f"Could not connect to the database: {e}") from e
        return self._conn

    def _query(self, statement) -> list[Any]:
        """Runs a read-only statement and returns all rows."""
        conn = self._connection()
        try:
            return conn.execute(statement).all()
        except SQLAlchemyError as e:
            raise DataSourceError(f"Database query failed: {e}") from e
        finally:
            conn.rollback()

    def test_connection(self) -> bool:
        try:
            self._query(select(1))
            return True
        except DataSourceError as e:
            log.debug(f"Connection test failed: {e}")
            return False

    def load_settings(self) -> dict[str, str]:
        """Returns the non-empty name/value pairs of the Setting table."""
        rows = self._query(select(settings.c.Name, settings.c.Value))
        return {row.Name: row.Value for row in rows if row.Name and row.Value}

    def list_libraries(self) -> list[LibraryInfo]:
        statement = (
            select(
                libraries.c.ID,
                libraries.c.LibraryName,
                libraries.c.Description,
                _document_count_column(),
            )
            .where(libraries.c.Deleted == false())
            .order_by(libraries.c.LibraryName)
        )
        return [_to_library_info(row) for row in self._query(statement)]

    def library_info(self, library_id: int) -> LibraryInfo | None:
        """Returns the library, or None if it is missing or deleted."""
        statement = select(
            libraries.c.ID,
            libraries.c.LibraryName,
            libraries.c.Description,
            _document_count_column(),
        ).where(libraries.c.ID == library_id, libraries.c.Deleted == false())
        rows = self._query(statement)
        return _to_library_info(rows[0]) if rows else None

    def fetch_page(self, library_id: int, skip: int, take: int) -> list[DocumentRef]:
        """
        Returns one page of a library's non-deleted documents, ordered by
        ascending document id.
        """
        statement = (
            select(
                documents.c.ID,
                documents.c.Name,
                documents.c.FileId,
                documents.c.IsArchived,
                documents.c.PhysicalPath,
            )
            .select_from(documents.join(folders, documents.c.FolderId == folders.c.ID))
            .where(folders.c.LibraryId == library_id, documents.c.Deleted == false())
            .order_by(documents.c.ID)
            .offset(skip)
            .limit(take)
        )
        return [
            DocumentRef(
                id=row.ID,
                name=row.Name or "",
                file_id=row.FileId,
                archived=row.IsArchived == 1,
                relative_path=row.PhysicalPath or "",
            )
            for row in self._query(statement)
        ]

    def chunk_count(self, file_id: int, archived: bool) -> int:
        table = file_chunks_archived if archived else file_chunks
        statement = select(func.count(table.c.Id)).where(table.c.FileId == file_id)
        return self._query(statement)[0][0]

    def fetch_chunk(self, file_id: int, index: int, archived: bool) -> bytes | None:
        """Returns the chunk stored under the physical ``index``, if any."""
        table = file_chunks_archived if archived else file_chunks
        statement = (
            select(table.c.ChunkData)
            .where(table.c.FileId == file_id, table.c.ChunkIndex == index)
            .limit(1)
        )
        rows = self._query(statement)
        return rows[0].ChunkData if rows else None

    def fetch_blob(self, file_id: int) -> bytes | None:
        """Returns the single-blob payload of a non-chunked file, if any."""
        statement = select(files.c.HashValue).where(files.c.Id == file_id)
        rows = self._query(statement)
        return rows[0].HashValue if rows else None

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._engine.dispose()
        log.debug("Document store connection closed.")
