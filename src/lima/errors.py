"""Failure kinds raised by the persistence layer.

Every error derives from exactly one taxonomy class (``NotFound``, ``Conflict``,
``InvalidInput``, ``StorageFault``, ``FilesystemFault``, ``Precondition``) so a
transport can map it to a response without knowing the operation. Each mutating
operation additionally documents the closed set of kinds it may raise as a tuple
that can be used directly in an ``except`` clause.
"""

from __future__ import annotations

from typing import Any


class LimaError(Exception):
    code = "lima_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        if self.__cause__ is not None:
            out["cause"] = str(self.__cause__)
        return out


# Taxonomy.


class NotFound(LimaError):
    code = "not_found"


class Conflict(LimaError):
    code = "conflict"


class InvalidInput(LimaError):
    code = "invalid_input"


class StorageFault(LimaError):
    code = "storage_fault"


class FilesystemFault(LimaError):
    code = "filesystem_fault"


class Precondition(LimaError):
    code = "precondition_failed"


# Concrete kinds.


class ProjectNotFound(NotFound):
    code = "project_not_found"

    def __init__(self, project_id: str):
        super().__init__(f"project not found: {project_id}", project_id=project_id)
        self.project_id = project_id


class AssetNotFound(NotFound):
    code = "asset_not_found"

    def __init__(self, project_id: str, asset_id: str):
        super().__init__(
            f"asset {asset_id} not found in project {project_id}",
            project_id=project_id,
            asset_id=asset_id,
        )
        self.project_id = project_id
        self.asset_id = asset_id


class BundleNotFound(NotFound):
    code = "bundle_not_found"

    def __init__(self, bundle_id: str):
        super().__init__(f"bundle not found: {bundle_id}", bundle_id=bundle_id)
        self.bundle_id = bundle_id


class FileConflict(Conflict):
    code = "file_conflict"

    def __init__(self, name: str):
        super().__init__(f"conflict with existing file: {name}", name=name)
        self.name = name


class ProjectExists(Conflict):
    code = "project_exists"


class TagExists(Conflict):
    code = "tag_exists"


class InvalidCursor(InvalidInput):
    code = "invalid_cursor"


class InvalidFilename(InvalidInput):
    code = "invalid_filename"

    def __init__(self, name: str, reason: str):
        super().__init__(f"invalid file name {name!r}: {reason}", name=name)
        self.name = name


class EmptyBundle(InvalidInput):
    code = "empty_bundle"


class MetaNotFound(Precondition):
    code = "meta_not_found"

    def __init__(self, bundle_id: str):
        super().__init__(f"missing meta file in bundle: {bundle_id}", bundle_id=bundle_id)
        self.bundle_id = bundle_id


class InvalidManifest(Precondition):
    code = "invalid_manifest"


class MissingFile(Precondition):
    code = "missing_file"

    def __init__(self, name: str):
        super().__init__(f"missing file in bundle: {name}", name=name)
        self.name = name


# Closed sets per operation.

CREATE_BUNDLE_ERRORS = (EmptyBundle, FilesystemFault)
DELETE_BUNDLE_ERRORS = (BundleNotFound, FilesystemFault)
IMPORT_ERRORS = (
    BundleNotFound,
    MetaNotFound,
    InvalidManifest,
    ProjectNotFound,
    MissingFile,
    FileConflict,
    FilesystemFault,
    StorageFault,
)
DELETE_ASSET_ERRORS = (AssetNotFound, StorageFault, FilesystemFault)
CREATE_PROJECT_ERRORS = (InvalidInput, ProjectExists, StorageFault, FilesystemFault)
DELETE_PROJECT_ERRORS = (ProjectNotFound, StorageFault, FilesystemFault)
