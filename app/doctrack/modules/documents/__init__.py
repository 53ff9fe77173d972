"""
Documents module.

- A document owns an append-only list of revisions (list position == revision index)
- Revisions are soft-deleted and restored, never removed
- Only a revision's designated uploader may attach its file, exactly once
- Reverting appends a new revision that points at the historical file
"""
