"""In-process store for local runs and tests.

All transactions run one at a time under a single lock, which makes them
serializable. Rollback restores a snapshot taken when the transaction began.
"""
import copy
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from bson.objectid import ObjectId

from storage import DuplicateEmail, Store, Transaction

TABLES = ("user", "product", "order", "order_item")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(ObjectId())


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryStore"):
        self.store = store

    def get_product(self, product_id):
        return self.store._get("product", product_id)

    def decrement_stock(self, product_id, quantity):
        row = self.store._tables["product"].get(product_id)
        if row is None or not row["is_active"] or row["stock"] < quantity:
            return False
        row["stock"] -= quantity
        row["updated_at"] = _now()
        return True

    def insert_order(self, order):
        now = _now()
        return self.store._insert("order", {**order, "created_at": now, "updated_at": now})["id"]

    def insert_order_item(self, item):
        return self.store._insert("order_item", item)["id"]


class MemoryStore(Store):
    def __init__(self):
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[str, dict]] = {name: {} for name in TABLES}

    def _get(self, table, row_id) -> Optional[dict]:
        row = self._tables[table].get(row_id)
        return dict(row) if row is not None else None

    def _insert(self, table, row) -> dict:
        row = {**row, "id": _new_id()}
        self._tables[table][row["id"]] = row
        return dict(row)

    def run_transaction(self, callback):
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                return callback(MemoryTransaction(self))
            except BaseException:
                self._tables = snapshot
                raise

    # ----------------------- Users -----------------------
    def create_user(self, user):
        with self._lock:
            if self._find_user(user["email"]) is not None:
                raise DuplicateEmail(user["email"])
            now = _now()
            return self._insert("user", {**user, "created_at": now, "updated_at": now})

    def _find_user(self, email):
        for row in self._tables["user"].values():
            if row["email"] == email:
                return dict(row)
        return None

    def find_user_by_email(self, email):
        with self._lock:
            return self._find_user(email)

    def get_user(self, user_id):
        with self._lock:
            return self._get("user", user_id)

    # ----------------------- Catalog -----------------------
    def list_products(self, active_only=True) -> List[dict]:
        with self._lock:
            return [
                dict(row) for row in self._tables["product"].values()
                if row["is_active"] or not active_only
            ]

    def get_product(self, product_id, active_only=True):
        with self._lock:
            row = self._get("product", product_id)
            if row is None or (active_only and not row["is_active"]):
                return None
            return row

    def create_product(self, product):
        with self._lock:
            now = _now()
            return self._insert("product", {**product, "created_at": now, "updated_at": now})

    def update_product(self, product_id, fields):
        with self._lock:
            row = self._tables["product"].get(product_id)
            if row is None:
                return None
            row.update(fields, updated_at=_now())
            return dict(row)

    def deactivate_product(self, product_id):
        with self._lock:
            row = self._tables["product"].get(product_id)
            if row is None:
                return False
            row.update(is_active=False, updated_at=_now())
            return True

    # ----------------------- Ledger -----------------------
    def get_order(self, order_id):
        with self._lock:
            return self._get("order", order_id)

    def list_orders(self, user_id=None):
        with self._lock:
            return [
                dict(row) for row in self._tables["order"].values()
                if user_id is None or row["user_id"] == user_id
            ]

    def list_order_items(self, order_id):
        with self._lock:
            return [
                dict(row) for row in self._tables["order_item"].values()
                if row["order_id"] == order_id
            ]

    def update_order_status(self, order_id, status):
        with self._lock:
            row = self._tables["order"].get(order_id)
            if row is None:
                return None
            row.update(status=status, updated_at=_now())
            return dict(row)

    def delete_order(self, order_id):
        with self._lock:
            items = self._tables["order_item"]
            for item_id in [k for k, v in items.items() if v["order_id"] == order_id]:
                del items[item_id]
            return self._tables["order"].pop(order_id, None) is not None

    def status(self):
        with self._lock:
            return {
                "backend": "memory",
                "database_name": None,
                "collections": [name for name in TABLES if self._tables[name]],
            }
