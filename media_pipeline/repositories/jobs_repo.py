"""Firestore accessors for per-job status documents."""


def doc_ref(db, owner_id, job_id):
    return db.collection('users').document(owner_id).collection('docs').document(job_id)


def get_job_doc(db, owner_id, job_id):
    snapshot = doc_ref(db, owner_id, job_id).get()
    if not getattr(snapshot, 'exists', False):
        return {}
    return snapshot.to_dict() or {}


def merge_job_fields(db, owner_id, job_id, payload):
    return doc_ref(db, owner_id, job_id).set(payload, merge=True)


def merge_job_status(db, owner_id, job_id, field_name, status_payload):
    return merge_job_fields(db, owner_id, job_id, {field_name: status_payload})
