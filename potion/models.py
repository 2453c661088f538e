from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from .database import Base

# Timestamps are kept as the ISO-8601 strings they arrived with so exports
# round-trip byte for byte.


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    schema_version = Column(Integer, nullable=False, default=1)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class Page(Base):
    __tablename__ = "pages"

    id = Column(String, primary_key=True)
    workspace_id = Column(String, index=True, nullable=False)
    # No foreign key: imported subtrees may reference parents that are not present
    parent_page_id = Column(String, index=True, nullable=True)
    title = Column(String, nullable=False, default="")
    kind = Column(String, index=True, nullable=False, default="page")
    is_favorite = Column(Boolean, nullable=False, default=False)
    content = Column(JSON, nullable=False)
    icon = Column(String, nullable=True)
    cover_image = Column(Text, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class Database(Base):
    __tablename__ = "databases"

    page_id = Column(String, primary_key=True)
    properties = Column(JSON, nullable=False)
    views = Column(JSON, nullable=False)


class Row(Base):
    __tablename__ = "rows"

    id = Column(String, primary_key=True)
    database_page_id = Column(String, index=True, nullable=False)
    page_id = Column(String, index=True, nullable=False)
    values = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class Settings(Base):
    __tablename__ = "settings"

    id = Column(String, primary_key=True)
    theme = Column(String, nullable=False, default="system")
    font_size = Column(Integer, nullable=False, default=16)
    editor_width = Column(String, nullable=False, default="medium")
    sidebar_collapsed = Column(Boolean, nullable=False, default=False)


class Migration(Base):
    __tablename__ = "migrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version = Column(Integer, index=True, nullable=False)
    name = Column(String, nullable=False)
    applied_at = Column(String, nullable=False)
    success = Column(Boolean, nullable=False)
    error = Column(Text, nullable=True)
    backup_path = Column(String, nullable=True)
