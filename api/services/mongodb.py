# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with numeric sequences, transactions and connection pooling.
"""

import os
import logging
from typing import Callable, Dict, List, Optional, Any, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError,
    PyMongoError
)

logger = logging.getLogger(__name__)

ACTIVITIES_COLLECTION = "programme_activites"
COUNTERS_COLLECTION = "counters"
ETABLISSEMENTS_COLLECTION = "etablissements"
USERS_COLLECTION = "users"
USER_PERMISSIONS_COLLECTION = "user_permissions"
AUDIT_LOGS_COLLECTION = "audit_logs"


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


def _with_public_id(document: Optional[Dict]) -> Optional[Dict]:
    """Expose the numeric ``_id`` as ``id``."""
    if document is not None and "_id" in document:
        document["id"] = document.pop("_id")
    return document


class MongoDBService:
    """MongoDB service with numeric identifiers, transactions and connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/portail_activites_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'portail_activites_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except PyMongoError as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    # Transactions and sequences

    def run_in_transaction(self, callback: Callable[[ClientSession], Any]) -> Any:
        """
        Run ``callback(session)`` in one multi-document transaction.

        ``ClientSession.with_transaction`` commits, aborts on error, and retries
        the callback on TransientTransactionError (write conflicts) and the
        commit on UnknownTransactionCommitResult. The callback may therefore
        run more than once. Requires a replica set or sharded cluster.
        """
        with self.client.start_session() as session:
            return session.with_transaction(callback)

    def next_sequence(self, name: str, count: int = 1) -> int:
        """
        Reserve ``count`` consecutive numeric identifiers.

        The increment is a single atomic update outside any transaction, so
        concurrent callers get disjoint blocks. Ids of aborted writes are lost.

        Returns:
            The first identifier of the reserved block
        """
        counter = self.get_collection(COUNTERS_COLLECTION).find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": count}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return counter["seq"] - count + 1

    # CRUD Operations

    def insert_one(self, collection: str, document: Dict, session: Optional[ClientSession] = None) -> Any:
        """Insert a document that already carries its ``_id``."""
        try:
            result = self.get_collection(collection).insert_one(document, session=session)
            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return result.inserted_id

        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")

    def insert_many(self, collection: str, documents: List[Dict], session: Optional[ClientSession] = None) -> List[Any]:
        """Insert documents in one ordered bulk write."""
        if not documents:
            return []

        result = self.get_collection(collection).insert_many(documents, ordered=True, session=session)
        logger.info(f"Created {len(result.inserted_ids)} documents in {collection}")
        return list(result.inserted_ids)

    def find_one(self, collection: str, query: Dict) -> Optional[Dict]:
        """Find a single document."""
        document = self.get_collection(collection).find_one(query)
        if document is None:
            logger.debug(f"No document in {collection} for {query}")
        return _with_public_id(document)

    def find(self, collection: str, query: Dict, sort: Optional[List[Tuple[str, int]]] = None,
             limit: int = 0) -> List[Dict]:
        """Find documents with optional sorting."""
        cursor = self.get_collection(collection).find(query)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)

        documents = [_with_public_id(doc) for doc in cursor]
        logger.debug(f"Found {len(documents)} documents in {collection}")
        return documents

    def update_one(self, collection: str, query: Dict, updates: Dict,
                   session: Optional[ClientSession] = None) -> bool:
        """Set fields on a single document. Returns whether a document matched."""
        result = self.get_collection(collection).update_one(query, {"$set": updates}, session=session)

        if result.matched_count > 0:
            logger.info(f"Updated document in {collection}")
            return True

        logger.warning(f"No document updated in {collection} for {query}")
        return False

    def update_many(self, collection: str, query: Dict, updates: Dict) -> int:
        """Set fields on every matching document. Returns the modified count."""
        result = self.get_collection(collection).update_many(query, {"$set": updates})
        logger.info(f"Updated {result.modified_count} documents in {collection}")
        return result.modified_count

    def paginate(self, collection: str, query: Dict, page: int = 1, page_size: int = 50,
                 sort: Optional[List[Tuple[str, int]]] = None) -> PaginationResult:
        """Paginate documents with sorting and filtering."""
        collection_obj = self.get_collection(collection)

        skip = (page - 1) * page_size
        total = collection_obj.count_documents(query)

        cursor = collection_obj.find(query)
        if sort:
            cursor = cursor.sort(sort)
        documents = [_with_public_id(doc) for doc in cursor.skip(skip).limit(page_size)]

        logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
        return PaginationResult(documents, total, page, page_size)

    def count(self, collection: str, query: Dict) -> int:
        """Count documents matching a query."""
        return self.get_collection(collection).count_documents(query)

    # Index Management

    def create_indexes(self) -> None:
        """Create performance indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            activities = self.get_collection(ACTIVITIES_COLLECTION)
            activities.create_index([("etablissementId", ASCENDING), ("date", ASCENDING), ("heureDebut", ASCENDING)])
            activities.create_index([("statut", ASCENDING), ("date", ASCENDING)])
            activities.create_index([("isVisiblePublic", ASCENDING), ("isValideParAdmin", ASCENDING), ("date", ASCENDING)])
            activities.create_index("recurrenceParentId")
            activities.create_index([("createdBy", ASCENDING), ("statut", ASCENDING)])

            permissions = self.get_collection(USER_PERMISSIONS_COLLECTION)
            permissions.create_index([("userId", ASCENDING), ("permission", ASCENDING)])

            audit_logs = self.get_collection(AUDIT_LOGS_COLLECTION)
            audit_logs.create_index([("entity", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
