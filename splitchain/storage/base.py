from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from splitchain.models.ledger import Group

GroupCallback = Callable[[Optional[Group]], None]
Unsubscribe = Callable[[], None]


class StorageError(Exception):
    pass


class BackendUnavailable(StorageError):
    """The backing store could not be reached or refused the request."""


class GroupBackend(ABC):
    """Whole-document storage for Group sessions, keyed by group id."""

    name = "abstract"

    @abstractmethod
    def get_group(self, group_id: str) -> Optional[Group]:
        ...

    @abstractmethod
    def save_group(self, group: Group) -> None:
        """Overwrite the stored document for ``group.id`` with ``group``."""

    @abstractmethod
    def get_all_groups(self) -> List[Group]:
        ...

    @abstractmethod
    def delete_group(self, group_id: str) -> None:
        ...

    @abstractmethod
    def update_group_status(self, group_id: str, is_active: bool, updated_at: int) -> None:
        ...

    @abstractmethod
    def subscribe(self, group_id: str, callback: GroupCallback) -> Unsubscribe:
        """
        Deliver the current document (if any) and then every later change.

        A deletion is delivered as ``None``. The returned callable stops
        delivery; it may be called any number of times.
        """

    def close(self) -> None:
        pass
