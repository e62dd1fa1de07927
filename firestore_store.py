"""
Firestore document store used as the second half of the MongoDB/Firestore
dual write.

Documents are plain dicts keyed by collection name, mirroring the MongoDB
layout.  The document id is carried as ``id`` in the returned dicts (Firestore
keeps it outside the document body).
"""
import logging
from typing import Any, Dict, Optional, Type

import firebase_admin
from firebase_admin import credentials, firestore
from pydantic import BaseModel

from schemas import utcnow

logger = logging.getLogger(__name__)


def init_firestore(credentials_path: str, project_id: str = ""):
    """Return a Firestore client on the default firebase-admin app.

    The app is initialized on first use and reused afterwards.
    """
    try:
        app = firebase_admin.get_app()
    except ValueError:
        cred = credentials.Certificate(credentials_path)
        options = {"projectId": project_id} if project_id else None
        app = firebase_admin.initialize_app(cred, options)
        logger.info("Firebase app initialized for project %s", project_id or app.project_id)
    return firestore.client(app)


class FirestoreStore:
    def __init__(self, client):
        self.client = client

    def _doc(self, collection_name: str, doc_id: str):
        return self.client.collection(collection_name).document(str(doc_id))

    def create(self, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in data.items() if k not in ("id", "_id")}
        now = utcnow()
        if not body.get("created_at"):
            body["created_at"] = now
        body["updated_at"] = now

        doc_id = data.get("id") or data.get("_id")
        collection = self.client.collection(collection_name)
        ref = collection.document(str(doc_id)) if doc_id else collection.document()
        ref.set(body)
        return {"id": ref.id, **body}

    def find_by_id(self, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._doc(collection_name, doc_id).get()
        if not snapshot.exists:
            return None
        return {"id": snapshot.id, **snapshot.to_dict()}

    def update_by_id(
        self,
        collection_name: str,
        doc_id: str,
        changes: Dict[str, Any],
        model: Optional[Type[BaseModel]] = None,
    ) -> Dict[str, Any]:
        current = self.find_by_id(collection_name, doc_id)
        if current is None:
            raise LookupError(f"{collection_name}/{doc_id} not found in Firestore")

        stored = {k: v for k, v in current.items() if k != "id"}
        merged = {**stored, **changes}
        if model is not None:
            merged = {**stored, **model.model_validate(merged).model_dump()}
            merged["created_at"] = current.get("created_at")
        merged["updated_at"] = utcnow()

        self._doc(collection_name, doc_id).set(merged)
        return {"id": str(doc_id), **merged}

    def delete_by_id(self, collection_name: str, doc_id: str) -> bool:
        ref = self._doc(collection_name, doc_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True
