"""
MongoDB access for FitTrack

One MongoClient is built lazily from DATABASE_URL / DATABASE_NAME and shared by
every request through the `get_db` dependency. Routes never touch a module
global directly, so tests can swap the database with
`app.dependency_overrides[get_db]`.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pydantic.networks import validate_email
from pydantic_core import PydanticCustomError
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from schemas import TrainerStatus

DEFAULT_DATABASE_NAME = "fit-track-DB"

_client: Optional[MongoClient] = None


def get_client() -> Optional[MongoClient]:
    global _client
    database_url = os.getenv("DATABASE_URL")
    if _client is None and database_url:
        _client = MongoClient(database_url)
    return _client


def get_db() -> Database:
    client = get_client()
    if client is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return client[os.getenv("DATABASE_NAME", DEFAULT_DATABASE_NAME)]


def close_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


def ensure_indexes(db: Database) -> None:
    """Create the indexes that enforce email uniqueness inside the store."""
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["subscribers"].create_index([("email", ASCENDING)], unique=True)
    # A rejected applicant may apply again, so only open applications are unique
    db["trainers"].create_index(
        [("email", ASCENDING)],
        unique=True,
        name="email_open_application",
        partialFilterExpression={
            "status": {"$in": [TrainerStatus.pending.value, TrainerStatus.verified.value]}
        },
    )


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="json", exclude_none=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    return [serialize(d) for d in db[collection_name].find(filter_dict or {})]


class NotFound(HTTPException):
    def __init__(self, what: str = "Document"):
        super().__init__(status_code=404, detail=f"{what} not found")


def normalize_email(value: str) -> str:
    """Spell an address the way EmailStr stored it; unparseable input is kept as is."""
    try:
        return validate_email(value)[1]
    except PydanticCustomError:
        return value


def to_object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(what)


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def insert_result(inserted_id: str) -> Dict[str, Any]:
    return {"acknowledged": True, "insertedId": inserted_id}
