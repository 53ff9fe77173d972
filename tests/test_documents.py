import io

import pytest

from app.doctrack import create_app
from app.doctrack.db import session_scope
from app.doctrack.errors import StorageFailure
from app.doctrack.models import AuditEvent, Base, Group, User
from app.doctrack.modules.documents import admin as documents_admin
from app.doctrack.modules.documents.models import Document, DocumentRevision


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("FILE_DIR", str(tmp_path / "files"))
    monkeypatch.setenv("REVISION_EXTENSIONS", ".pdf,.docx")
    monkeypatch.setenv("REVISION_MAX_FILE_SIZE", "1024")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        admins = Group(name="Administrators")
        prs = Group(name="Program Review Subcommittee")
        users = {
            "admin": User(username="admin", email="admin@example.com", is_active=True, groups=[admins]),
            "alice": User(username="alice", email="alice@example.com", is_active=True, groups=[prs]),
            "bob": User(username="bob", email="bob@example.com", is_active=True, groups=[prs]),
            "outsider": User(username="outsider", email="outsider@example.com", is_active=True),
        }
        s.add_all([admins, prs, *users.values()])
        s.flush()
        app.config["TEST_USER_IDS"] = {name: u.id for name, u in users.items()}

    return app


def _client_as(app, username):
    client = app.test_client()
    with client.session_transaction() as sess:
        sess["user_id"] = app.config["TEST_USER_IDS"][username]
    return client


def _create_document(client, title="Program Review", **extra):
    r = client.post("/api/document", json={"title": title, **extra})
    assert r.status_code == 201
    return r.json["id"]


def _upload(client, doc_id, index, content=b"%PDF-1.4 hello", name="report.PDF"):
    return client.put(
        f"/api/document/{doc_id}/revision/{index}/file",
        data={"file": (io.BytesIO(content), name)},
        content_type="multipart/form-data",
    )


def _stored_files(tmp_path):
    root = tmp_path / "files"
    return sorted(p.name for p in root.iterdir()) if root.exists() else []


def _audit_descriptions(app):
    with session_scope(app) as s:
        return [e.description for e in s.query(AuditEvent).order_by(AuditEvent.id.asc()).all()]


def test_requires_login(app):
    r = app.test_client().get("/api/document/1")
    assert r.status_code == 401


def test_requires_group_membership(app):
    client = _client_as(app, "outsider")
    r = client.post("/api/document", json={"title": "Nope"})
    assert r.status_code == 403


def test_create_get_and_missing_document(app):
    client = _client_as(app, "alice")
    r = client.post("/api/document", json={"title": "Program Review", "completionEstimate": 2})
    assert r.status_code == 201
    doc_id = r.json["id"]
    assert r.json["revisions"] == []
    assert r.json["coreTemplate"] is False

    r = client.get(f"/api/document/{doc_id}")
    assert r.status_code == 200
    assert r.json["title"] == "Program Review"
    assert r.json["completionEstimate"] == 2

    r = client.get("/api/document/9999")
    assert r.status_code == 404
    assert "error" in r.json

    r = client.post("/api/document", json={"completionEstimate": 2})
    assert r.status_code == 400

    assert _audit_descriptions(app) == ['created a new document "Program Review"']


def test_patch_allow_list(app):
    client = _client_as(app, "alice")
    doc_id = _create_document(client)

    r = client.patch(f"/api/document/{doc_id}", json={"title": "X", "notAllowed": 1})
    assert r.status_code == 400
    assert client.get(f"/api/document/{doc_id}").json["title"] == "Program Review"

    r = client.patch(f"/api/document/{doc_id}", json={"title": "Renamed"})
    assert r.status_code == 200
    assert r.json["title"] == "Renamed"
    assert r.json["completionEstimate"] is None

    r = client.patch("/api/document/9999", json={"title": "Ghost"})
    assert r.status_code == 404

    r = client.patch(f"/api/document/{doc_id}", json={})
    assert r.status_code == 400

    assert _audit_descriptions(app)[-1] == "renamed document to Renamed"


def test_revision_lifecycle_over_http(app, tmp_path):
    alice = _client_as(app, "alice")
    bob = _client_as(app, "bob")
    admin = _client_as(app, "admin")

    doc_id = _create_document(alice)

    r = alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})
    assert r.status_code == 201
    assert r.json["index"] == 0
    assert r.json["uploader"]["username"] == "alice"

    # Only the designated uploader may supply the file.
    r = _upload(bob, doc_id, 0)
    assert r.status_code == 403
    assert _stored_files(tmp_path) == []

    r = _upload(alice, doc_id, 0)
    assert r.status_code == 200
    assert r.json["hasFile"] is True
    assert r.json["fileExtension"] == ".pdf"
    assert len(_stored_files(tmp_path)) == 1

    # Exactly once.
    r = _upload(alice, doc_id, 0, content=b"other")
    assert r.status_code == 409
    assert len(_stored_files(tmp_path)) == 1

    r = alice.get(f"/api/document/{doc_id}/revision/0/file")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 hello"
    assert "Program Review_revision_1_alice.pdf" in r.headers["Content-Disposition"]
    r.close()

    # Revert is attributed to whoever asks for it and points at the same file.
    r = bob.post(f"/api/document/{doc_id}/revision", json={"revert": "0"})
    assert r.status_code == 201
    assert r.json["index"] == 1
    assert r.json["message"] == "Revert to revision: 'init'"
    assert r.json["uploader"]["username"] == "bob"
    assert r.json["hasFile"] is True

    r = bob.get(f"/api/document/{doc_id}/revision/1/file")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 hello"
    assert "Program Review_revision_2_bob.pdf" in r.headers["Content-Disposition"]
    r.close()

    r = bob.post(f"/api/document/{doc_id}/revision", json={"revert": "abc"})
    assert r.status_code == 400
    r = bob.post(f"/api/document/{doc_id}/revision", json={"revert": 5})
    assert r.status_code == 404
    r = bob.post(f"/api/document/{doc_id}/revision", json={"message": ""})
    assert r.status_code == 400
    assert len(alice.get(f"/api/document/{doc_id}").json["revisions"]) == 2

    # Soft delete keeps the revision and its file.
    r = alice.delete(f"/api/document/{doc_id}/revision/0")
    assert r.status_code == 204
    revs = alice.get(f"/api/document/{doc_id}").json["revisions"]
    assert [rev["deleted"] for rev in revs] == [True, False]
    assert revs[0]["hasFile"] is True

    r = alice.delete(f"/api/document/{doc_id}/revision/7")
    assert r.status_code == 404

    # Restore is administrators-only.
    r = alice.post(f"/api/document/{doc_id}/revision/0/restore")
    assert r.status_code == 403
    r = admin.post(f"/api/document/{doc_id}/revision/0/restore")
    assert r.status_code == 200
    assert r.json["deleted"] is False

    with session_scope(app) as s:
        revs = s.query(DocumentRevision).order_by(DocumentRevision.position.asc()).all()
        assert [rev.position for rev in revs] == [0, 1]
        assert revs[0].filename == revs[1].filename
        assert revs[1].uploader.username == "bob"

    assert _audit_descriptions(app) == [
        'created a new document "Program Review"',
        f'Created a revision "init" on document {doc_id}',
        f"uploaded a file to revision 0 on document {doc_id}",
        f"Created a revision \"Revert to revision: 'init'\" on document {doc_id}",
        f"deleted revision 0 on document {doc_id}",
        f"restored revision 0 on document {doc_id}",
    ]


def test_upload_rejections(app, tmp_path):
    alice = _client_as(app, "alice")
    doc_id = _create_document(alice)
    alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})

    r = _upload(alice, doc_id, 0, name="payload.exe")
    assert r.status_code == 400

    r = _upload(alice, doc_id, 0, content=b"x" * 2048, name="big.pdf")
    assert r.status_code == 400

    r = alice.put(f"/api/document/{doc_id}/revision/0/file", data={}, content_type="multipart/form-data")
    assert r.status_code == 400

    r = _upload(alice, doc_id, 3)
    assert r.status_code == 404

    assert _stored_files(tmp_path) == []
    r = alice.get(f"/api/document/{doc_id}/revision/0/file")
    assert r.status_code == 404


@pytest.mark.parametrize("name", ["отчёт.pdf", "報告.PDF", "..pdf"])
def test_upload_keeps_extension_of_non_ascii_names(app, tmp_path, name):
    alice = _client_as(app, "alice")
    doc_id = _create_document(alice)
    alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})

    r = _upload(alice, doc_id, 0, name=name)
    assert r.status_code == 200
    assert r.json["fileExtension"] == ".pdf"
    assert len(_stored_files(tmp_path)) == 1


def test_upload_over_request_cap_is_bad_request(app, tmp_path):
    alice = _client_as(app, "alice")
    doc_id = _create_document(alice)
    alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})
    app.config["MAX_CONTENT_LENGTH"] = 2048

    r = _upload(alice, doc_id, 0, content=b"x" * 4096, name="big.pdf")
    assert r.status_code == 400
    assert r.json["error"] == "File too large. Maximum size is 1024 bytes."
    assert _stored_files(tmp_path) == []
    assert alice.get(f"/api/document/{doc_id}").json["revisions"][0]["hasFile"] is False


def test_upload_commit_failure_removes_stored_file(app, tmp_path, monkeypatch):
    alice = _client_as(app, "alice")
    doc_id = _create_document(alice)
    alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})

    def _failing_commit(s):
        s.rollback()
        raise StorageFailure("Could not persist changes")

    monkeypatch.setattr(documents_admin, "commit", _failing_commit)

    r = _upload(alice, doc_id, 0)
    assert r.status_code == 500
    assert r.json["error"] == "Could not persist changes"
    assert _stored_files(tmp_path) == []

    rev = alice.get(f"/api/document/{doc_id}").json["revisions"][0]
    assert rev["hasFile"] is False
    assert rev["fileExtension"] is None
    assert f"uploaded a file to revision 0 on document {doc_id}" not in _audit_descriptions(app)


def test_delete_document(app, tmp_path):
    alice = _client_as(app, "alice")
    admin = _client_as(app, "admin")

    template_id = _create_document(alice, title="Baseline", coreTemplate=True)
    doc_id = _create_document(alice)
    alice.post(f"/api/document/{doc_id}/revision", json={"message": "init"})
    assert _upload(alice, doc_id, 0).status_code == 200
    alice.post(f"/api/document/{doc_id}/revision", json={"revert": 0})
    assert len(_stored_files(tmp_path)) == 1

    r = alice.delete(f"/api/document/{doc_id}")
    assert r.status_code == 403

    r = admin.delete(f"/api/document/{template_id}")
    assert r.status_code == 400
    assert alice.get(f"/api/document/{template_id}").status_code == 200

    r = admin.delete(f"/api/document/{doc_id}")
    assert r.status_code == 204
    assert alice.get(f"/api/document/{doc_id}").status_code == 404
    assert _stored_files(tmp_path) == []

    # Already absent: still a success.
    r = admin.delete(f"/api/document/{doc_id}")
    assert r.status_code == 204

    with session_scope(app) as s:
        assert s.get(Document, template_id) is not None
        assert s.query(DocumentRevision).count() == 0

    assert _audit_descriptions(app)[-1] == "deleted document Program Review"
