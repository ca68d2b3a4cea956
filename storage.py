"""Storage interface shared by the MongoDB and in-process backends.

Records cross this boundary as plain dicts with a string ``id`` and
``Decimal`` money fields, whatever the backend keeps internally.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, TypeVar

T = TypeVar("T")


class DuplicateEmail(Exception):
    pass


class Transaction(ABC):
    """Reads and writes bound to one transactional scope."""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[dict]:
        """Return the product, active or not, or None if it does not exist."""

    @abstractmethod
    def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """Take ``quantity`` off an active product's stock only if that much is left.

        Returns False, leaving the product untouched, when the condition fails.
        """

    @abstractmethod
    def insert_order(self, order: dict) -> str:
        ...

    @abstractmethod
    def insert_order_item(self, item: dict) -> str:
        ...


class Store(ABC):
    @abstractmethod
    def run_transaction(self, callback: Callable[[Transaction], T]) -> T:
        """Run ``callback`` in one transaction.

        Commits when it returns; rolls back and re-raises when it raises.
        """

    # Users

    @abstractmethod
    def create_user(self, user: dict) -> dict:
        """Insert a user; raises DuplicateEmail if the email is taken."""

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[dict]:
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[dict]:
        ...

    # Catalog

    @abstractmethod
    def list_products(self, active_only: bool = True) -> List[dict]:
        ...

    @abstractmethod
    def get_product(self, product_id: str, active_only: bool = True) -> Optional[dict]:
        ...

    @abstractmethod
    def create_product(self, product: dict) -> dict:
        ...

    @abstractmethod
    def update_product(self, product_id: str, fields: dict) -> Optional[dict]:
        ...

    @abstractmethod
    def deactivate_product(self, product_id: str) -> bool:
        ...

    # Ledger

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def list_orders(self, user_id: Optional[str] = None) -> List[dict]:
        ...

    @abstractmethod
    def list_order_items(self, order_id: str) -> List[dict]:
        ...

    @abstractmethod
    def update_order_status(self, order_id: str, status: str) -> Optional[dict]:
        ...

    @abstractmethod
    def delete_order(self, order_id: str) -> bool:
        """Hard-delete an order and its items. Returns whether it existed."""

    @abstractmethod
    def status(self) -> dict:
        """Connection report for the health endpoint."""
