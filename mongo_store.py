from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from bson import Decimal128
from bson.objectid import ObjectId
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from storage import DuplicateEmail, Store, Transaction

# Fields holding references to other documents; stored as ObjectId
REFERENCE_FIELDS = ("user_id", "order_id", "product_id")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, Decimal128):
            doc[k] = v.to_decimal()
    return doc


def to_bson(data: dict) -> dict:
    doc = {}
    for k, v in data.items():
        if isinstance(v, Decimal):
            v = Decimal128(v)
        elif k in REFERENCE_FIELDS and to_object_id(v) is not None:
            v = to_object_id(v)
        doc[k] = v
    return doc


class MongoTransaction(Transaction):
    def __init__(self, db, session):
        self.db = db
        self.session = session

    def get_product(self, product_id):
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return serialize_doc(self.db["product"].find_one({"_id": oid}, session=self.session))

    def decrement_stock(self, product_id, quantity):
        res = self.db["product"].update_one(
            {"_id": to_object_id(product_id), "is_active": True, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": _now()}},
            session=self.session,
        )
        return res.modified_count == 1

    def insert_order(self, order):
        now = _now()
        res = self.db["order"].insert_one(
            to_bson({**order, "created_at": now, "updated_at": now}), session=self.session
        )
        return str(res.inserted_id)

    def insert_order_item(self, item):
        res = self.db["order_item"].insert_one(to_bson(item), session=self.session)
        return str(res.inserted_id)


class MongoStore(Store):
    """MongoDB backend. Transactions need a replica set or sharded cluster."""

    def __init__(self, client: MongoClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    @classmethod
    def from_url(cls, url: str, database_name: str) -> "MongoStore":
        return cls(MongoClient(url, tz_aware=True), database_name)

    def ensure_indexes(self) -> None:
        self.db["user"].create_index([("email", ASCENDING)], unique=True)
        self.db["order_item"].create_index([("order_id", ASCENDING)])
        self.db["order"].create_index([("user_id", ASCENDING)])

    def run_transaction(self, callback):
        with self.client.start_session() as session:
            return session.with_transaction(
                lambda s: callback(MongoTransaction(self.db, s)),
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
            )

    # ----------------------- Users -----------------------
    def create_user(self, user):
        now = _now()
        doc = to_bson({**user, "created_at": now, "updated_at": now})
        try:
            res = self.db["user"].insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateEmail(user.get("email"))
        return serialize_doc({**doc, "_id": res.inserted_id})

    def find_user_by_email(self, email):
        return serialize_doc(self.db["user"].find_one({"email": email}))

    def get_user(self, user_id):
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return serialize_doc(self.db["user"].find_one({"_id": oid}))

    # ----------------------- Catalog -----------------------
    def list_products(self, active_only=True) -> List[dict]:
        filt = {"is_active": True} if active_only else {}
        return [serialize_doc(d) for d in self.db["product"].find(filt)]

    def get_product(self, product_id, active_only=True):
        oid = to_object_id(product_id)
        if oid is None:
            return None
        filt = {"_id": oid}
        if active_only:
            filt["is_active"] = True
        return serialize_doc(self.db["product"].find_one(filt))

    def create_product(self, product):
        now = _now()
        doc = to_bson({**product, "created_at": now, "updated_at": now})
        res = self.db["product"].insert_one(doc)
        return serialize_doc({**doc, "_id": res.inserted_id})

    def update_product(self, product_id, fields):
        oid = to_object_id(product_id)
        if oid is None:
            return None
        update = to_bson({**fields, "updated_at": _now()})
        doc = self.db["product"].find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
        return serialize_doc(doc)

    def deactivate_product(self, product_id):
        oid = to_object_id(product_id)
        if oid is None:
            return False
        res = self.db["product"].update_one(
            {"_id": oid}, {"$set": {"is_active": False, "updated_at": _now()}}
        )
        return res.matched_count == 1

    # ----------------------- Ledger -----------------------
    def get_order(self, order_id):
        oid = to_object_id(order_id)
        if oid is None:
            return None
        return serialize_doc(self.db["order"].find_one({"_id": oid}))

    def list_orders(self, user_id=None):
        filt = {}
        if user_id is not None:
            filt["user_id"] = to_object_id(user_id)
        return [serialize_doc(d) for d in self.db["order"].find(filt)]

    def list_order_items(self, order_id):
        oid = to_object_id(order_id)
        if oid is None:
            return []
        return [serialize_doc(d) for d in self.db["order_item"].find({"order_id": oid})]

    def update_order_status(self, order_id, status):
        oid = to_object_id(order_id)
        if oid is None:
            return None
        doc = self.db["order"].find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status, "updated_at": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_doc(doc)

    def delete_order(self, order_id):
        oid = to_object_id(order_id)
        if oid is None:
            return False

        def _delete(session):
            self.db["order_item"].delete_many({"order_id": oid}, session=session)
            return self.db["order"].delete_one({"_id": oid}, session=session).deleted_count == 1

        with self.client.start_session() as session:
            return session.with_transaction(_delete)

    def status(self):
        self.client.admin.command("ping")
        return {
            "backend": "mongodb",
            "database_name": self.db.name,
            "collections": self.db.list_collection_names()[:10],
        }
