from __future__ import annotations

from dataclasses import dataclass, field

from lima.pagination import Cursor


@dataclass(slots=True)
class ProjectRow:
    id: str
    folder_path: str
    name: str
    description: str
    main_image_id: str | None
    created_at: str
    updated_at: str
    last_scanned_at: str | None

    def cursor(self) -> Cursor:
        return Cursor(updated_at=self.updated_at, id=self.id)


@dataclass(slots=True)
class SearchProjectRow:
    rank: float
    project: ProjectRow

    def cursor(self) -> Cursor:
        return Cursor(updated_at=self.project.updated_at, id=self.project.id, rank=self.rank)


@dataclass(slots=True)
class TagRow:
    id: str
    name: str
    color: str
    created_at: str
    updated_at: str

    def cursor(self) -> Cursor:
        return Cursor(updated_at=self.updated_at, id=self.id)


@dataclass(slots=True)
class ProjectTagRow:
    id: str
    name: str
    color: str


@dataclass(slots=True)
class ProjectAssetRow:
    id: str
    file_path: str
    kind: str
    size_bytes: int


@dataclass(slots=True)
class AssetRecord:
    id: str
    project_id: str
    file_path: str
    kind: str
    size_bytes: int
    mtime: str | None
    mime: str
    file_hash: str | None
    created_at: str
    updated_at: str


@dataclass(slots=True)
class ProjectDetail:
    project: ProjectRow
    tags: list[ProjectTagRow] = field(default_factory=list)
    assets: list[ProjectAssetRow] = field(default_factory=list)


@dataclass(slots=True)
class CreatedProject:
    id: str
    folder_path: str
