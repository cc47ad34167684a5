from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
import logging
from typing import Any, Iterable

from lima import assets as assets_mod
from lima import projects as projects_mod
from lima.bundles import BundleStore, UploadPart
from lima.config import AppConfig
from lima.db import Database
from lima.errors import InvalidInput
from lima.importer import import_from_bundle, upload_assets
from lima.pagination import Page, next_cursor, parse_cursor, require_ranked
from lima.tags import create_tag, list_tags
from lima.util.time import now_iso

logger = logging.getLogger(__name__)


def _page_dict(page: Page) -> dict[str, Any]:
    return {"items": [asdict(item) for item in page.items], "next_cursor": page.next_cursor}


class LimaService:
    """Entry point for transports: owns the database handle and the staging area."""

    def __init__(self, config: AppConfig, db: Database | None = None):
        self.config = config
        self.config.ensure_dirs()
        self.db = db or Database(
            config.db.path,
            pool_size=config.db.pool_size,
            acquire_timeout=config.db.acquire_timeout,
            busy_timeout_ms=config.db.busy_timeout_ms,
        )
        self.db.initialize()
        self.bundles = BundleStore(config.bundles_dir)

    @property
    def library_root(self) -> Path:
        return self.config.library_root

    def close(self) -> None:
        self.db.close()

    def clamp_limit(self, limit: int | None) -> int:
        paging = self.config.paging
        if limit is None:
            limit = paging.default_limit
        return max(1, min(int(limit), paging.max_limit))

    # Listing and search

    def list_projects(self, limit: int | None = None, cursor: str | None = None) -> dict[str, Any]:
        position = parse_cursor(cursor)
        with self.db.connect() as conn:
            rows = projects_mod.list_projects(conn, self.clamp_limit(limit), position)
        return _page_dict(Page(items=rows, next_cursor=next_cursor(rows, lambda r: r.cursor())))

    def search_projects(self, query: str, limit: int | None = None, cursor: str | None = None) -> dict[str, Any]:
        if not query.strip():
            raise InvalidInput("search query must not be empty")
        position = require_ranked(parse_cursor(cursor))
        with self.db.connect() as conn:
            rows = projects_mod.search_projects(conn, query, self.clamp_limit(limit), position)
        page = Page(items=[r.project for r in rows], next_cursor=next_cursor(rows, lambda r: r.cursor()))
        out = _page_dict(page)
        for item, row in zip(out["items"], rows):
            item["rank"] = row.rank
        return out

    def list_tags(self, limit: int | None = None, cursor: str | None = None) -> dict[str, Any]:
        position = parse_cursor(cursor)
        with self.db.connect() as conn:
            rows = list_tags(conn, self.clamp_limit(limit), position)
        return _page_dict(Page(items=rows, next_cursor=next_cursor(rows, lambda r: r.cursor())))

    # Projects

    def project_get(self, project_id: str) -> dict[str, Any]:
        with self.db.connect() as conn:
            detail = projects_mod.get_project_detail(conn, project_id)
        return asdict(detail)

    def project_create(self, name: str, description: str = "", tags: Iterable[str] = ()) -> dict[str, Any]:
        created = projects_mod.create_project(self.db, self.library_root, name, description, tags)
        return asdict(created)

    def project_update(
        self,
        project_id: str,
        name: str | None = None,
        description: str | None = None,
        main_image_id: str | None = None,
    ) -> dict[str, Any]:
        with self.db.transaction() as conn:
            projects_mod.update_project(conn, project_id, name, description, main_image_id)
            detail = projects_mod.get_project(conn, project_id)
        return asdict(detail)

    def project_set_tags(self, project_id: str, names: Iterable[str]) -> dict[str, Any]:
        with self.db.transaction() as conn:
            projects_mod.replace_project_tags(conn, project_id, list(names))
            tags = projects_mod.get_project_tags(conn, project_id)
        return {"project_id": project_id, "tags": [asdict(t) for t in tags]}

    def project_delete(self, project_id: str) -> None:
        projects_mod.delete_project(self.db, self.library_root, project_id)

    def project_scan(self, project_id: str) -> dict[str, Any]:
        stats = projects_mod.scan_project(self.db, self.library_root, project_id)
        return {"project_id": project_id, **asdict(stats)}

    # Tags

    def tag_create(self, name: str) -> dict[str, Any]:
        with self.db.transaction() as conn:
            tag = create_tag(conn, name, now_iso())
        return asdict(tag)

    # Assets

    def asset_delete(self, project_id: str, asset_id: str) -> None:
        assets_mod.delete_asset(self.db, self.library_root, project_id, asset_id)

    def asset_set_main(self, project_id: str, asset_id: str) -> None:
        with self.db.transaction() as conn:
            assets_mod.set_project_main_image(conn, project_id, asset_id, now_iso())

    # Bundles and imports

    def bundle_create(self, parts: Iterable[UploadPart]) -> dict[str, Any]:
        created = self.bundles.create(parts)
        return {"id": created.id, "files": created.files, "failed_files": created.failed_files}

    def bundle_delete(self, bundle_id: str) -> None:
        self.bundles.delete(bundle_id)

    def project_import(self, project_id: str, bundle_id: str) -> dict[str, Any]:
        imported = import_from_bundle(self.db, self.bundles, self.library_root, project_id, bundle_id)
        return {"project_id": project_id, "added": len(imported), "assets": [asdict(a) for a in imported]}

    def project_upload(
        self,
        project_id: str,
        parts: Iterable[UploadPart],
        main_image: str | None = None,
    ) -> dict[str, Any]:
        imported = upload_assets(self.db, self.bundles, self.library_root, project_id, parts, main_image)
        return {"project_id": project_id, "added": len(imported), "assets": [asdict(a) for a in imported]}
