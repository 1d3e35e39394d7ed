"""
Storage adapters over MongoDB collections.

Transformations that run around every read and write (timestamps, version
key, password hashing, soft-delete filtering, credential projection) are
explicit ``_before_*`` functions called from each store method.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument

from api.errors import CastError
from api.features import QuerySpec
from api.models import (
    HIDDEN_USER_FIELDS, VERSION_KEY,
    BookCreate, UserCreate, UserRecord, to_aliases
)

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, path: str = "_id") -> ObjectId:
    """Parse a resource identifier, raising CastError on a malformed one."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise CastError(path, value)


def _before_insert(doc: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    doc[VERSION_KEY] = 0
    return doc


async def _find(collection: AsyncIOMotorCollection, spec: QuerySpec) -> List[Dict[str, Any]]:
    cursor = collection.find(spec.filter, spec.projection)
    if spec.sort:
        cursor = cursor.sort(spec.sort)
    if spec.skip:
        cursor = cursor.skip(spec.skip)
    if spec.limit:
        cursor = cursor.limit(spec.limit)
    return await cursor.to_list(length=spec.limit)


class BookStore:
    """Catalog store: owns the lifetime of book documents."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create_indexes(self) -> None:
        await self.collection.create_index("name", unique=True)
        await self.collection.create_index("price")
        await self.collection.create_index("createdAt")

    async def find(self, spec: QuerySpec) -> List[Dict[str, Any]]:
        return await _find(self.collection, spec)

    async def get(self, book_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(book_id)}, {VERSION_KEY: 0})

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and insert a new book."""
        book = BookCreate.model_validate(data)
        doc = _before_insert(book.model_dump(by_alias=True))
        result = await self.collection.insert_one(doc)
        book = {key: value for key, value in doc.items() if key != VERSION_KEY}
        book["_id"] = result.inserted_id
        logger.info("Book created", book_id=str(result.inserted_id), name=book["name"])
        return book

    async def update(self, book_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Apply a partial update after re-validating the merged document.

        Returns:
            The updated document, or None if no book has that id
        """
        object_id = to_object_id(book_id)
        current = await self.collection.find_one({"_id": object_id})
        if current is None:
            return None

        merged = {**current, **to_aliases(BookCreate, changes)}
        book = BookCreate.model_validate(merged)
        values = book.model_dump(by_alias=True)
        values["updatedAt"] = utcnow()

        return await self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": values},
            projection={VERSION_KEY: 0},
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, book_id: str) -> bool:
        result = await self.collection.delete_one({"_id": to_object_id(book_id)})
        return result.deleted_count > 0


class UserStore:
    """
    Credential store: owns the lifetime of user documents.

    Reads skip inactive (soft-deleted) users and never return credential
    fields unless the caller asks for them.
    """

    def __init__(self, collection: AsyncIOMotorCollection, password_hasher):
        self.collection = collection
        self.password_hasher = password_hasher

    async def create_indexes(self) -> None:
        await self.collection.create_index("email", unique=True)
        await self.collection.create_index("passwordResetToken", sparse=True)

    @staticmethod
    def _before_query(query: Dict[str, Any], include_inactive: bool = False) -> Dict[str, Any]:
        if include_inactive:
            return query
        return {"$and": [query, {"active": {"$ne": False}}]} if query else {"active": {"$ne": False}}

    @staticmethod
    def _hidden_projection(projection: Optional[Dict[str, int]], with_password: bool = False) -> Dict[str, int]:
        hidden = [name for name in HIDDEN_USER_FIELDS if not (with_password and name == "password")]
        if projection and any(projection.get(name) for name in projection if name != "_id"):
            return {name: value for name, value in projection.items() if name not in hidden}
        merged = dict(projection or {VERSION_KEY: 0})
        merged.update({name: 0 for name in hidden})
        return merged

    async def _before_save(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc["password"] = await self.password_hasher.hash(doc["password"])
        doc.pop("passwordConfirm", None)
        return doc

    async def find(self, spec: QuerySpec, include_inactive: bool = False) -> List[Dict[str, Any]]:
        query = QuerySpec(
            filter=self._before_query(spec.filter, include_inactive),
            sort=spec.sort,
            skip=spec.skip,
            limit=spec.limit,
            projection=self._hidden_projection(spec.projection),
        )
        return await _find(self.collection, query)

    async def find_one(
        self,
        query: Dict[str, Any],
        with_password: bool = False,
        include_inactive: bool = False,
    ) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one(
            self._before_query(query, include_inactive),
            self._hidden_projection(None, with_password=with_password),
        )

    async def get(self, user_id: Any, with_password: bool = False) -> Optional[Dict[str, Any]]:
        return await self.find_one({"_id": to_object_id(user_id)}, with_password=with_password)

    async def get_by_email(self, email: str, with_password: bool = False) -> Optional[Dict[str, Any]]:
        return await self.find_one({"email": email.strip().lower()}, with_password=with_password)

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate, hash and insert a new user; the role is always the default."""
        user = UserCreate.model_validate(data)
        doc = user.model_dump(by_alias=True)
        doc.update({"role": "user", "active": True})
        doc = _before_insert(await self._before_save(doc))
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info("User created", user_id=str(result.inserted_id))
        return doc

    async def update(self, user_id: Any, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update to profile fields after re-validation."""
        object_id = to_object_id(user_id)
        current = await self.find_one({"_id": object_id})
        if current is None:
            return None

        merged = {**current, **to_aliases(UserRecord, changes)}
        record = UserRecord.model_validate(merged)
        values = record.model_dump(by_alias=True, mode="json")
        values["updatedAt"] = utcnow()

        return await self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": values},
            projection=self._hidden_projection(None),
            return_document=ReturnDocument.AFTER,
        )

    async def set_password(self, user_id: Any, password: str) -> Optional[Dict[str, Any]]:
        """Hash an already validated password and clear any pending reset token."""
        doc = await self._before_save({"password": password})
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(user_id)},
            {
                "$set": {"password": doc["password"], "updatedAt": utcnow()},
                "$unset": {"passwordResetToken": "", "passwordResetExpires": ""},
            },
            projection=self._hidden_projection(None),
            return_document=ReturnDocument.AFTER,
        )

    async def set_reset_token(self, user_id: Any, hashed_token: str, expires_at: datetime) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$set": {"passwordResetToken": hashed_token, "passwordResetExpires": expires_at}},
        )

    async def clear_reset_token(self, user_id: Any) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$unset": {"passwordResetToken": "", "passwordResetExpires": ""}},
        )

    async def find_by_reset_token(self, hashed_token: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({
            "passwordResetToken": hashed_token,
            "passwordResetExpires": {"$gt": utcnow()},
        })

    async def deactivate(self, user_id: Any) -> None:
        """Soft delete: the document stays in storage with ``active`` false."""
        await self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$set": {"active": False, "updatedAt": utcnow()}},
        )

    async def delete(self, user_id: Any) -> bool:
        result = await self.collection.delete_one({"_id": to_object_id(user_id)})
        return result.deleted_count > 0


class APIDatabaseService:
    """Database service owning the stores and connection health."""

    def __init__(self, database: AsyncIOMotorDatabase, password_hasher, books: str = "books", users: str = "users"):
        self.database = database
        self.books = BookStore(database[books])
        self.users = UserStore(database[users], password_hasher)

    async def create_indexes(self) -> None:
        await self.books.create_indexes()
        await self.users.create_indexes()
        logger.info("Successfully created MongoDB indexes")

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            return {"status": "healthy"}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy", "error": str(e)}
