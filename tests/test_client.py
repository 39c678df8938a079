import asyncio

import pytest

from library_dl.exceptions import DataSourceError
from library_dl.source.client import LibraryStoreClient
from library_dl.source.gateway import MetadataGateway


@pytest.fixture
def seeded(store):
    store.library(1, "Zoning", description="Permits")
    store.library(2, "Archive")
    store.library(3, "Removed", deleted=True)
    store.folder(10, 1)
    store.folder(11, 1)
    store.folder(20, 2)
    for file_id in (100, 101, 102, 103, 200):
        store.file(file_id, blob=f"blob-{file_id}".encode())
    store.document(5, 11, 103, "e.txt", archived=1)
    store.document(2, 10, 101, "b.txt", path="Plans\\Site")
    store.document(1, 10, 100, "a.txt", archived=0)
    store.document(3, 10, 102, "c.txt", deleted=True)
    store.document(4, 11, 103, "d.txt")
    store.document(9, 20, 200, "other.txt")
    return store


@pytest.fixture
def client(store_url, seeded):
    client = LibraryStoreClient(store_url)
    yield client
    client.close()


def test_lists_non_deleted_libraries_by_name_with_counts(client):
    libraries = client.list_libraries()

    assert [lib.name for lib in libraries] == ["Archive", "Zoning"]
    zoning = libraries[1]
    assert zoning.id == 1
    assert zoning.description == "Permits"
    assert zoning.document_count == 4


def test_library_info_hides_missing_and_deleted_libraries(client):
    assert client.library_info(1).document_count == 4
    assert client.library_info(3) is None
    assert client.library_info(404) is None


def test_fetch_page_orders_by_document_id_and_pages(client):
    first = client.fetch_page(1, 0, 3)
    second = client.fetch_page(1, 3, 3)

    assert [doc.id for doc in first] == [1, 2, 4]
    assert [doc.id for doc in second] == [5]
    assert client.fetch_page(1, 6, 3) == []


def test_fetch_page_maps_archived_flag_and_relative_path(client):
    docs = {doc.id: doc for doc in client.fetch_page(1, 0, 10)}

    assert docs[5].archived is True
    assert docs[1].archived is False
    assert docs[4].archived is False
    assert docs[2].relative_path == "Plans\\Site"
    assert docs[2].file_id == 101


def test_chunk_queries_use_the_matching_table(store, client):
    store.chunks(100, {1: b"A", -1: b"B"})
    store.chunks(100, {-1: b"archived"}, archived=True)

    assert client.chunk_count(100, False) == 2
    assert client.chunk_count(100, True) == 1
    assert client.chunk_count(101, False) == 0
    assert client.fetch_chunk(100, -1, False) == b"B"
    assert client.fetch_chunk(100, -1, True) == b"archived"
    assert client.fetch_chunk(100, 2, False) is None


def test_fetch_blob(client):
    assert client.fetch_blob(101) == b"blob-101"
    assert client.fetch_blob(999) is None


def test_load_settings_skips_empty_values(store, client):
    store.setting("DownloadPath", "/srv/exports")
    store.setting("StorageLocation", "")

    assert client.load_settings() == {"DownloadPath": "/srv/exports"}


def test_connection_test(client, tmp_path):
    assert client.test_connection()

    unreachable = LibraryStoreClient(f"sqlite:///{tmp_path / 'missing' / 'x.db'}")
    try:
        assert not unreachable.test_connection()
    finally:
        unreachable.close()


def test_query_errors_are_wrapped(tmp_path):
    client = LibraryStoreClient(f"sqlite:///{tmp_path / 'no-schema.db'}")
    try:
        with pytest.raises(DataSourceError):
            client.list_libraries()
    finally:
        client.close()


@pytest.mark.asyncio
async def test_gateway_serializes_concurrent_calls(client):
    gateway = MetadataGateway(client)

    results = await asyncio.gather(
        gateway.library_info(1),
        gateway.fetch_page(1, 0, 2),
        gateway.fetch_blob(100),
        gateway.list_libraries(),
    )

    assert results[0].name == "Zoning"
    assert [doc.id for doc in results[1]] == [1, 2]
    assert results[2] == b"blob-100"
    assert len(results[3]) == 2
