from __future__ import annotations

import mimetypes
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, send_file
from sqlalchemy.orm import Session

from app.doctrack.audit import record_event
from app.doctrack.db import commit, db_session
from app.doctrack.errors import Forbidden, InvalidInput, NotFound, PolicyViolation, StorageFailure
from app.doctrack.models import User
from app.doctrack.modules.documents.models import Document
from app.doctrack.modules.documents.service import (
    DocumentPatch,
    add_revision,
    attach_file,
    check_upload,
    create_document,
    delete_document,
    delete_revision,
    describe_document_created,
    describe_document_deleted,
    describe_document_updated,
    describe_file_uploaded,
    describe_revision_created,
    describe_revision_deleted,
    describe_revision_restored,
    document_to_dict,
    download_name,
    new_file_handle,
    parse_revision_index,
    restore_revision,
    revert_revision,
    revision_at,
    revision_to_dict,
    update_document,
    validate_upload,
)
from app.doctrack.rbac import ADMINISTRATORS, PROGRAM_REVIEW_SUBCOMMITTEE, allow_groups
from app.doctrack.storage import Storage, StorageError, storage_from_config

bp = Blueprint("documents", __name__)

EDITOR_GROUPS = (ADMINISTRATORS, PROGRAM_REVIEW_SUBCOMMITTEE)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_document_or_404(s: Session, document_id: int) -> Document:
    d = s.get(Document, document_id)
    if d is None:
        raise NotFound(f"Document {document_id} not found")
    return d


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object.")
    return data


def _discard_file(storage: Storage, key: str) -> None:
    try:
        storage.delete(key)
    except StorageError as e:
        current_app.logger.error("Could not remove orphaned revision file %s: %s", key, e)


# ---------- Documents ----------
@bp.post("/document")
@allow_groups(EDITOR_GROUPS)
def document_create():
    s = db_session()
    u = _current_user()
    body = _json_body()

    try:
        d = create_document(
            title=body.get("title"),
            completion_estimate=body.get("completionEstimate"),
            core_template=body.get("coreTemplate", False),
        )
    except InvalidInput:
        current_app.logger.info("Failed to create document with body: %s", body)
        raise
    s.add(d)
    s.flush()

    record_event(
        s,
        actor=u,
        action="document.create",
        description=describe_document_created(d),
        entity_type="document",
        entity_id=str(d.id),
    )
    commit(s)
    current_app.logger.info("Created document with id %s", d.id)
    return jsonify(document_to_dict(d)), 201


@bp.get("/document/<int:document_id>")
@allow_groups(EDITOR_GROUPS)
def document_detail(document_id: int):
    s = db_session()
    d = _get_document_or_404(s, document_id)
    return jsonify(document_to_dict(d))


@bp.patch("/document/<int:document_id>")
@allow_groups(EDITOR_GROUPS)
def document_update(document_id: int):
    s = db_session()
    u = _current_user()

    # Whole patch is refused before the document is touched.
    patch = DocumentPatch.from_mapping(request.get_json(silent=True))
    d = _get_document_or_404(s, document_id)
    update_document(d, patch)
    record_event(
        s,
        actor=u,
        action="document.update",
        description=describe_document_updated(d, patch),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"fields": sorted(patch.present)},
    )
    commit(s)
    current_app.logger.info("Updated document with id %s", d.id)
    return jsonify(document_to_dict(d))


@bp.delete("/document/<int:document_id>")
@allow_groups([ADMINISTRATORS])
def document_delete(document_id: int):
    s = db_session()
    u = _current_user()

    d = s.get(Document, document_id)
    if d is None:
        # Already gone: idempotent for retries.
        current_app.logger.info("Document %s already absent; nothing to delete", document_id)
        return "", 204

    try:
        filenames = delete_document(d)
    except PolicyViolation:
        current_app.logger.warning("Refused to delete core template document %s", d.id)
        raise

    record_event(
        s,
        actor=u,
        action="document.delete",
        description=describe_document_deleted(d),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"filenames": filenames},
    )
    s.delete(d)
    commit(s)
    current_app.logger.info(
        "Deleted document with id %s. Its revision files are [%s]", document_id, ", ".join(filenames)
    )

    storage = storage_from_config(current_app.config)
    for key in filenames:
        _discard_file(storage, key)
    return "", 204


# ---------- Revisions ----------
@bp.post("/document/<int:document_id>/revision")
@allow_groups(EDITOR_GROUPS)
def revision_create(document_id: int):
    s = db_session()
    u = _current_user()
    body = _json_body()

    revert_index = None
    if body.get("revert") is not None:
        try:
            revert_index = parse_revision_index(body["revert"])
        except InvalidInput:
            current_app.logger.info("Invalid revert index specified when creating a revert revision (could not parse to integer)")
            raise

    d = _get_document_or_404(s, document_id)
    if revert_index is not None:
        r = revert_revision(d, revert_index, u)
    else:
        r = add_revision(d, body.get("message"), u)

    record_event(
        s,
        actor=u,
        action="revision.revert" if revert_index is not None else "revision.create",
        description=describe_revision_created(d, r),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"revision": r.position, "revert": revert_index},
    )
    commit(s)
    current_app.logger.info("Created revision %s on document %s", r.position, d.id)
    return jsonify(revision_to_dict(r)), 201


@bp.delete("/document/<int:document_id>/revision/<revision>")
@allow_groups(EDITOR_GROUPS)
def revision_delete(document_id: int, revision: str):
    s = db_session()
    u = _current_user()

    d = _get_document_or_404(s, document_id)
    r = delete_revision(d, revision)
    record_event(
        s,
        actor=u,
        action="revision.delete",
        description=describe_revision_deleted(d, r),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"revision": r.position},
    )
    commit(s)
    current_app.logger.info("Deleted revision %s on document %s", r.position, d.id)
    return "", 204


@bp.post("/document/<int:document_id>/revision/<revision>/restore")
@allow_groups([ADMINISTRATORS])
def revision_restore(document_id: int, revision: str):
    s = db_session()
    u = _current_user()

    d = _get_document_or_404(s, document_id)
    r = restore_revision(d, revision)
    record_event(
        s,
        actor=u,
        action="revision.restore",
        description=describe_revision_restored(d, r),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"revision": r.position},
    )
    commit(s)
    current_app.logger.info("Restored revision %s on document %s", r.position, d.id)
    return jsonify(revision_to_dict(r)), 200


@bp.get("/document/<int:document_id>/revision/<revision>/file")
@allow_groups(EDITOR_GROUPS)
def revision_file_download(document_id: int, revision: str):
    s = db_session()
    d = _get_document_or_404(s, document_id)
    r = revision_at(d, revision)
    if r.filename is None:
        raise NotFound(f"Revision {r.position} on document {d.id} has no file")

    storage = storage_from_config(current_app.config)
    fobj = storage.open(r.filename)
    name = download_name(d, r)
    return send_file(
        fobj,
        mimetype=mimetypes.guess_type(name)[0] or "application/octet-stream",
        as_attachment=True,
        download_name=name,
        max_age=0,
    )


@bp.put("/document/<int:document_id>/revision/<revision>/file")
@allow_groups(EDITOR_GROUPS)
def revision_file_upload(document_id: int, revision: str):
    s = db_session()
    u = _current_user()

    d = _get_document_or_404(s, document_id)
    # Gate before accepting any bytes.
    try:
        r = check_upload(d, revision, u)
    except Forbidden:
        current_app.logger.warning("Non-uploader attempted to upload to a revision before the uploader")
        raise

    files = request.files.getlist("file")
    if len(files) != 1 or len(request.files) != 1 or not files[0].filename:
        raise InvalidInput("Exactly one file field named 'file' is required.")
    if request.form:
        raise InvalidInput("Unexpected form fields in upload.")

    f = files[0]
    data = f.read()
    ext = validate_upload(
        f.filename,
        len(data),
        allowed_extensions=current_app.config["REVISION_EXTENSIONS"],
        max_size=current_app.config["REVISION_MAX_FILE_SIZE"],
    )

    storage = storage_from_config(current_app.config)
    key = new_file_handle()
    storage.put_bytes(key, data, content_type=(f.mimetype or "application/octet-stream").strip())

    r = attach_file(d, r.position, u, key, ext)
    record_event(
        s,
        actor=u,
        action="revision.upload",
        description=describe_file_uploaded(d, r),
        entity_type="document",
        entity_id=str(d.id),
        metadata={"revision": r.position, "file_extension": ext, "size_bytes": len(data)},
    )
    try:
        commit(s)
    except StorageFailure:
        current_app.logger.error("Error saving document %s after file upload", d.id)
        _discard_file(storage, key)
        raise
    current_app.logger.info("Uploaded file for revision %s on document %s", r.position, d.id)
    return jsonify(revision_to_dict(r)), 200
