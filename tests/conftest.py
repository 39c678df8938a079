import threading
import time
from pathlib import Path

import pytest
from sqlalchemy import create_engine

from library_dl.exceptions import DataSourceError
from library_dl.models.config import RunSettings
from library_dl.models.records import DocumentRef, LibraryInfo
from library_dl.source import schema


class StoreBuilder:
    """Inserts rows into a document store database created from the schema."""

    def __init__(self, engine):
        self.engine = engine

    def _insert(self, table, **values):
        with self.engine.begin() as conn:
            conn.execute(table.insert().values(**values))

    def library(self, library_id, name, description="", deleted=False):
        self._insert(
            schema.libraries,
            ID=library_id,
            LibraryName=name,
            Description=description,
            Deleted=deleted,
        )

    def folder(self, folder_id, library_id, deleted=False):
        self._insert(
            schema.folders,
            ID=folder_id,
            LibraryId=library_id,
            FolderName=f"folder-{folder_id}",
            Deleted=deleted,
        )

    def file(self, file_id, blob=None):
        self._insert(
            schema.files,
            Id=file_id,
            FileName=f"file-{file_id}",
            HashValue=blob,
            FileSize=len(blob) if blob else 0,
        )

    def document(
        self,
        document_id,
        folder_id,
        file_id,
        name,
        path=None,
        archived=None,
        deleted=False,
    ):
        self._insert(
            schema.documents,
            ID=document_id,
            FolderId=folder_id,
            FileId=file_id,
            Name=name,
            PhysicalPath=path,
            IsArchived=archived,
            Deleted=deleted,
        )

    def chunks(self, file_id, chunks, archived=False):
        table = schema.file_chunks_archived if archived else schema.file_chunks
        for index, data in chunks.items():
            self._insert(
                table,
                FileId=file_id,
                ChunkIndex=index,
                ChunkData=data,
                ChunkSize=len(data),
            )

    def setting(self, name, value):
        self._insert(schema.settings, Name=name, Value=value)


@pytest.fixture
def store_url(tmp_path):
    return f"sqlite:///{tmp_path / 'store.db'}"


@pytest.fixture
def store_engine(store_url):
    engine = create_engine(store_url)
    schema.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(store_engine):
    return StoreBuilder(store_engine)


class FakeStoreClient:
    """
    In-memory stand-in for LibraryStoreClient that records how many calls
    overlap in time.
    """

    def __init__(
        self,
        library=None,
        documents=(),
        blobs=None,
        chunks=None,
        settings=None,
        delay=0.0,
    ):
        self.library = library
        self.documents = sorted(documents, key=lambda doc: doc.id)
        self.blobs = blobs or {}
        self.chunks = chunks or {}
        self.settings = settings or {}
        self.delay = delay
        self.failing_offsets = set()
        self.page_offsets = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._guard = threading.Lock()

    def _enter(self):
        with self._guard:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.delay:
            time.sleep(self.delay)

    def _exit(self):
        with self._guard:
            self.in_flight -= 1

    def _call(self, func):
        self._enter()
        try:
            return func()
        finally:
            self._exit()

    def load_settings(self):
        return self._call(lambda: dict(self.settings))

    def list_libraries(self):
        return self._call(lambda: [self.library] if self.library else [])

    def library_info(self, library_id):
        def lookup():
            if self.library and self.library.id == library_id:
                return self.library
            return None

        return self._call(lookup)

    def fetch_page(self, library_id, skip, take):
        def page():
            self.page_offsets.append(skip)
            if skip in self.failing_offsets:
                raise DataSourceError(f"page at offset {skip} unavailable")
            return self.documents[skip : skip + take]

        return self._call(page)

    def chunk_count(self, file_id, archived):
        return self._call(lambda: len(self.chunks.get((file_id, archived), {})))

    def fetch_chunk(self, file_id, index, archived):
        return self._call(lambda: self.chunks.get((file_id, archived), {}).get(index))

    def fetch_blob(self, file_id):
        return self._call(lambda: self.blobs.get(file_id))


def make_library(document_count, library_id=7, name="Contracts"):
    """A library with ``document_count`` single-blob documents."""
    library = LibraryInfo(id=library_id, name=name, document_count=document_count)
    documents = [
        DocumentRef(id=i, name=f"doc-{i}.txt", file_id=1000 + i)
        for i in range(1, document_count + 1)
    ]
    blobs = {doc.file_id: f"payload {doc.id}".encode() for doc in documents}
    return FakeStoreClient(library=library, documents=documents, blobs=blobs)


@pytest.fixture
def run_settings(tmp_path) -> RunSettings:
    return RunSettings(
        download_path=tmp_path / "downloads",
        store_files_in_db=True,
        storage_root=tmp_path / "storage",
    )


@pytest.fixture
def downloads(run_settings) -> Path:
    return run_settings.download_path
