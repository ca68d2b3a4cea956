from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from bson import Decimal128
from bson.objectid import ObjectId
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, OperationFailure

from database import create_store
from config import Settings
from errors import InsufficientStock, StoreFailure
from memory_store import MemoryStore
from mongo_store import MongoStore, MongoTransaction, serialize_doc, to_bson
from orders import place_order
from schemas import Caller, CartLine, CartRequest
from storage import DuplicateEmail


@pytest.fixture
def mongo():
    """A MongoStore over a mocked client; every collection is the same mock."""
    client = MagicMock()
    session = client.start_session.return_value.__enter__.return_value
    session.with_transaction.side_effect = lambda callback, **kwargs: callback(session)
    store = MongoStore(client, "shop")
    return store, session, store.db["product"]


def test_serialize_doc():
    oid, pid = ObjectId(), ObjectId()
    doc = serialize_doc({"_id": oid, "product_id": pid, "price": Decimal128("10.00"), "quantity": 2})
    assert doc == {"id": str(oid), "product_id": str(pid), "price": Decimal("10.00"), "quantity": 2}


def test_to_bson():
    pid = str(ObjectId())
    doc = to_bson({"product_id": pid, "price": Decimal("3.25"), "quantity": 1, "user_id": "legacy"})
    assert doc["product_id"] == ObjectId(pid)
    assert doc["price"] == Decimal128("3.25")
    assert doc["user_id"] == "legacy"


def test_decrement_is_conditional():
    db = MagicMock()
    db["product"].update_one.return_value.modified_count = 0
    session = object()
    pid = str(ObjectId())

    assert MongoTransaction(db, session).decrement_stock(pid, 3) is False

    call = db["product"].update_one.call_args
    filt, update = call.args
    assert filt == {"_id": ObjectId(pid), "is_active": True, "stock": {"$gte": 3}}
    assert update["$inc"] == {"stock": -3}
    assert call.kwargs["session"] is session


def test_malformed_product_id_skips_query():
    db = MagicMock()
    assert MongoTransaction(db, object()).get_product("7") is None
    db["product"].find_one.assert_not_called()


def test_run_transaction_hands_callback_a_session_bound_transaction(mongo):
    store, session, _ = mongo
    seen = []

    assert store.run_transaction(lambda tx: seen.append(tx) or "done") == "done"

    assert isinstance(seen[0], MongoTransaction)
    assert seen[0].session is session
    assert session.with_transaction.call_count == 1


def test_place_order_on_mongo(mongo):
    store, session, collection = mongo
    pid, order_oid, user_oid = ObjectId(), ObjectId(), ObjectId()
    collection.find_one.return_value = {
        "_id": pid, "name": "Widget", "price": Decimal128("10.00"), "stock": 5, "is_active": True,
    }
    collection.insert_one.return_value.inserted_id = order_oid
    collection.update_one.return_value.modified_count = 1
    cart = CartRequest(items=[CartLine(product_id=str(pid), quantity=2)], shipping_address="x")

    placed = place_order(store, Caller(id=str(user_oid), role="customer"), cart)

    assert placed.order_id == str(order_oid)
    assert placed.total == Decimal("20.00")
    order_doc, item_doc = [c.args[0] for c in collection.insert_one.call_args_list]
    assert order_doc["total_amount"] == Decimal128("20.00")
    assert order_doc["user_id"] == user_oid
    assert order_doc["status"] == "pending"
    assert item_doc == {"order_id": order_oid, "product_id": pid, "quantity": 2, "price": Decimal128("10.00")}
    for c in collection.insert_one.call_args_list + collection.update_one.call_args_list:
        assert c.kwargs["session"] is session


def test_lost_decrement_on_mongo_aborts(mongo):
    store, _, collection = mongo
    pid = ObjectId()
    collection.find_one.return_value = {"_id": pid, "price": Decimal128("1.00"), "stock": 5, "is_active": True}
    collection.insert_one.return_value.inserted_id = ObjectId()
    collection.update_one.return_value.modified_count = 0
    cart = CartRequest(items=[CartLine(product_id=str(pid), quantity=2)], shipping_address="x")

    with pytest.raises(InsufficientStock):
        place_order(store, Caller(id=str(ObjectId()), role="customer"), cart)


def test_driver_error_becomes_store_failure(mongo):
    store, _, collection = mongo
    collection.find_one.side_effect = OperationFailure("Transaction numbers are only allowed on a replica set")
    cart = CartRequest(items=[CartLine(product_id=str(ObjectId()), quantity=1)], shipping_address="x")

    with pytest.raises(StoreFailure) as exc:
        place_order(store, Caller(id=str(ObjectId()), role="customer"), cart)

    assert "replica" not in exc.value.message


def test_duplicate_email(mongo):
    store, _, collection = mongo
    collection.insert_one.side_effect = DuplicateKeyError("E11000")
    with pytest.raises(DuplicateEmail):
        store.create_user({"name": "A", "email": "a@example.com", "password_hash": "h", "role": "customer"})


def test_delete_order_removes_items_in_one_transaction(mongo):
    store, session, collection = mongo
    oid = ObjectId()
    collection.delete_one.return_value.deleted_count = 1

    assert store.delete_order(str(oid)) is True

    collection.delete_many.assert_called_once_with({"order_id": oid}, session=session)
    collection.delete_one.assert_called_once_with({"_id": oid}, session=session)


def test_store_selection():
    assert isinstance(create_store(Settings(DATABASE_URL="memory://")), MemoryStore)
    with pytest.raises(ValueError):
        create_store(Settings(DATABASE_URL="postgres://localhost/shop"))


def test_database_url_is_required(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
    with pytest.raises(ValueError):
        create_store(Settings(DATABASE_URL=""))
