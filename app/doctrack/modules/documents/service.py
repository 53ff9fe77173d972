"""
Revision lifecycle for documents.

All operations work on an in-memory Document aggregate and never touch the
session: the caller loads the document, runs exactly one operation, then commits.
Preconditions are checked before anything is mutated.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from app.doctrack.errors import Conflict, Forbidden, InvalidInput, NotFound, PolicyViolation
from app.doctrack.modules.documents.models import Document, DocumentRevision, RevisionState

if TYPE_CHECKING:
    from app.doctrack.models import User


_INDEX_RE = re.compile(r"[+-]?\d+")


# ---------- Revision index ----------
def parse_revision_index(raw: Any) -> int:
    """
    Parse a revision index from a path segment or JSON value.

    Accepts ints and base-10 integer strings; bools, floats and anything else are rejected.
    """
    if isinstance(raw, bool):
        raise InvalidInput(f"Invalid revision index: {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and _INDEX_RE.fullmatch(raw.strip()):
        return int(raw.strip())
    raise InvalidInput(f"Invalid revision index: {raw!r}")


def valid_revision(document: Document, index: Any) -> bool:
    try:
        i = parse_revision_index(index)
    except InvalidInput:
        return False
    return 0 <= i < len(document.revisions)


def revision_at(document: Document, index: Any) -> DocumentRevision:
    if not valid_revision(document, index):
        raise NotFound(f"Revision {index!r} not found on document {document.id}")
    return document.revisions[parse_revision_index(index)]


# ---------- Revision sequence ----------
def _new_revision(position: int, message: str, author: "User") -> DocumentRevision:
    return DocumentRevision(
        position=position,
        message=message,
        uploader=author,
        uploader_user_id=author.id,
        filename=None,
        file_extension=None,
        state=RevisionState.ACTIVE.value,
    )


def add_revision(document: Document, message: Any, author: "User") -> DocumentRevision:
    if not isinstance(message, str) or not message.strip():
        raise InvalidInput("A revision message is required.")
    r = _new_revision(len(document.revisions), message, author)
    document.revisions.append(r)
    return r


def set_revision_state(document: Document, index: Any, state: RevisionState) -> DocumentRevision:
    r = revision_at(document, index)
    r.state = state.value
    return r


def delete_revision(document: Document, index: Any) -> DocumentRevision:
    # Files stay attached so restore recovers the same file.
    return set_revision_state(document, index, RevisionState.DELETED)


def restore_revision(document: Document, index: Any) -> DocumentRevision:
    return set_revision_state(document, index, RevisionState.ACTIVE)


def revert_message(target: DocumentRevision) -> str:
    return f"Revert to revision: '{target.message}'"


def build_revert(revisions: Sequence[DocumentRevision], target_index: int, author: "User") -> DocumentRevision:
    """
    Build the revision that reverts to ``revisions[target_index]``.

    The result points at the target's stored file but is attributed to ``author``.
    Nothing is appended; ``revert_revision`` does that.
    """
    if not 0 <= target_index < len(revisions):
        raise NotFound(f"Revision {target_index!r} not found")
    target = revisions[target_index]
    r = _new_revision(len(revisions), revert_message(target), author)
    r.filename = target.filename
    r.file_extension = target.file_extension
    return r


def revert_revision(document: Document, target_index: Any, author: "User") -> DocumentRevision:
    revision_at(document, target_index)
    r = build_revert(document.revisions, parse_revision_index(target_index), author)
    document.revisions.append(r)
    return r


# ---------- Upload gate ----------
def check_upload(document: Document, index: Any, requester: "User") -> DocumentRevision:
    """
    Upload preconditions, in order: revision exists, has no file yet, requester is its uploader.
    """
    r = revision_at(document, index)
    if r.filename is not None:
        raise Conflict("Revision file must be null for a new file to be uploaded")
    if r.uploader_user_id != requester.id:
        raise Forbidden("Only the revision's uploader may upload its file")
    return r


def attach_file(
    document: Document,
    index: Any,
    requester: "User",
    stored_filename: str,
    extension: str,
) -> DocumentRevision:
    r = check_upload(document, index, requester)
    if not stored_filename or not extension:
        raise InvalidInput("Stored filename and extension are required.")
    r.filename = stored_filename
    r.file_extension = extension.lower()
    return r


def upload_extension(original_filename: str) -> str:
    """Lower-cased suffix of the client's filename, taken as sent (any script)."""
    name = (original_filename or "").replace("\\", "/")
    return PurePosixPath(name).suffix.lower()


def validate_upload(
    original_filename: str,
    size_bytes: int,
    *,
    allowed_extensions: Iterable[str],
    max_size: int,
) -> str:
    """Transport-level acceptance of an uploaded file. Returns the lower-cased extension."""
    ext = upload_extension(original_filename)
    if not ext or ext not in set(allowed_extensions):
        raise InvalidInput("Invalid file extension")
    if size_bytes > max_size:
        raise InvalidInput(f"File too large. Maximum size is {max_size} bytes.")
    return ext


def new_file_handle() -> str:
    return uuid.uuid4().hex


def download_name(document: Document, revision: DocumentRevision) -> str:
    return f"{document.title}_revision_{revision.label}_{revision.uploader.username}{revision.file_extension or ''}"


# ---------- Document aggregate ----------
PATCH_FIELDS = {"title": "title", "completionEstimate": "completion_estimate"}


def _clean_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("title must be a non-empty string.")
    return value.strip()


def _clean_estimate(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput("completionEstimate must be a number.")
    return float(value)


@dataclass(frozen=True)
class DocumentPatch:
    """Closed update schema: only title and completionEstimate may be patched."""

    title: str | None = None
    completion_estimate: float | None = None
    present: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_mapping(cls, data: Any) -> "DocumentPatch":
        if not isinstance(data, Mapping):
            raise InvalidInput("Patch body must be a JSON object.")
        unknown = sorted(str(k) for k in data if k not in PATCH_FIELDS)
        if unknown:
            raise InvalidInput(f"Fields not allowed in patch: {', '.join(unknown)}")
        if not data:
            raise InvalidInput("Patch must include title or completionEstimate.")
        values: dict[str, Any] = {}
        if "title" in data:
            values["title"] = _clean_title(data["title"])
        if "completionEstimate" in data:
            values["completion_estimate"] = _clean_estimate(data["completionEstimate"])
        return cls(present=frozenset(values), **values)


def create_document(title: Any, completion_estimate: Any = None, core_template: Any = False) -> Document:
    if not isinstance(core_template, bool):
        raise InvalidInput("coreTemplate must be a boolean.")
    return Document(
        title=_clean_title(title),
        completion_estimate=_clean_estimate(completion_estimate),
        core_template=core_template,
        revisions=[],
    )


def update_document(document: Document, patch: DocumentPatch) -> Document:
    for name in patch.present:
        setattr(document, name, getattr(patch, name))
    return document


def delete_document(document: Document) -> list[str]:
    """
    Check the document may be removed and return the stored files it references.

    Soft-deleted revisions count too; reverts share handles, so each appears once.
    """
    if document.core_template:
        raise PolicyViolation("Core template documents cannot be deleted.")
    filenames: list[str] = []
    for r in document.revisions:
        if r.filename is not None and r.filename not in filenames:
            filenames.append(r.filename)
    return filenames


# ---------- Serialization ----------
def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def revision_to_dict(r: DocumentRevision) -> dict[str, Any]:
    return {
        "index": r.position,
        "message": r.message,
        "uploader": {"id": r.uploader_user_id, "username": r.uploader.username if r.uploader else None},
        "hasFile": r.has_file,
        "fileExtension": r.file_extension,
        "deleted": r.deleted,
        "createdAt": _iso(r.created_at),
    }


def document_to_dict(d: Document) -> dict[str, Any]:
    return {
        "id": d.id,
        "title": d.title,
        "completionEstimate": d.completion_estimate,
        "coreTemplate": bool(d.core_template),
        "createdAt": _iso(d.created_at),
        "revisions": [revision_to_dict(r) for r in d.revisions],
    }


# ---------- Audit descriptions ----------
def describe_document_created(d: Document) -> str:
    return f'created a new document "{d.title}"'


def describe_document_updated(d: Document, patch: DocumentPatch) -> str:
    if "title" in patch.present:
        return f"renamed document to {d.title}"
    return f"updated completion estimate of document {d.title} to {d.completion_estimate}"


def describe_document_deleted(d: Document) -> str:
    return f"deleted document {d.title}"


def describe_revision_created(d: Document, r: DocumentRevision) -> str:
    return f'Created a revision "{r.message}" on document {d.id}'


def describe_revision_deleted(d: Document, r: DocumentRevision) -> str:
    return f"deleted revision {r.position} on document {d.id}"


def describe_revision_restored(d: Document, r: DocumentRevision) -> str:
    return f"restored revision {r.position} on document {d.id}"


def describe_file_uploaded(d: Document, r: DocumentRevision) -> str:
    return f"uploaded a file to revision {r.position} on document {d.id}"
