"""
SQLAlchemy table definitions for the document store.

Only the columns the downloader reads are declared.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    SmallInteger,
    String,
    Table,
)

# Physical index of the terminal chunk of a chunked file
TERMINAL_CHUNK_INDEX = -1

metadata = MetaData()

libraries = Table(
    "Library",
    metadata,
    Column("ID", Integer, primary_key=True),
    Column("LibraryName", String(255)),
    Column("Description", String(1024)),
    Column("Deleted", Boolean, nullable=False, default=False),
    Column("CreatedOn", DateTime),
    Column("UpdatedOn", DateTime),
)

folders = Table(
    "Folders",
    metadata,
    Column("ID", Integer, primary_key=True),
    Column("LibraryId", Integer, ForeignKey("Library.ID"), nullable=False),
    Column("FolderName", String(255)),
    Column("PhysicalPath", String(1024)),
    Column("Deleted", Boolean, nullable=False, default=False),
    Column("CreatedOn", DateTime),
)

files = Table(
    "File",
    metadata,
    Column("Id", Integer, primary_key=True),
    Column("FileName", String(255)),
    Column("HashValue", LargeBinary),
    Column("FileSize", Integer),
)

documents = Table(
    "Documents",
    metadata,
    Column("ID", Integer, primary_key=True),
    Column("FolderId", Integer, ForeignKey("Folders.ID"), nullable=False),
    Column("FileId", Integer, ForeignKey("File.Id"), nullable=False),
    Column("Name", String(255)),
    Column("Description", String(1024)),
    Column("PhysicalPath", String(1024)),
    Column("Tags", String(1024)),
    Column("Deleted", Boolean, nullable=False, default=False),
    Column("IsArchived", SmallInteger),
    Column("CreatedOn", DateTime),
    Index("IX_Documents_FolderId", "FolderId"),
)


def _chunk_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("Id", Integer, primary_key=True),
        Column("FileId", Integer, ForeignKey("File.Id"), nullable=False),
        Column("ChunkIndex", Integer, nullable=False),
        Column("ChunkData", LargeBinary),
        Column("ChunkSize", Integer),
        Index(f"IX_{name}_FileId_ChunkIndex", "FileId", "ChunkIndex"),
    )


file_chunks = _chunk_table("FileChunks")
file_chunks_archived = _chunk_table("FileChunksArchived")

settings = Table(
    "Setting",
    metadata,
    Column("Id", Integer, primary_key=True),
    Column("Name", String(255), nullable=False),
    Column("Value", String(1024), nullable=False),
)
