"""
Group document synchronization.

Every mutation reads the whole group, changes it in memory and writes the
whole group back. There is no version check: two writers appending to the
same group at once can lose one of the appends (last write wins).
"""

import logging
from typing import List, Optional

from splitchain.models.ledger import Expense, Group, Participant, Settlement, now_ms
from splitchain.storage.base import GroupBackend, GroupCallback, Unsubscribe


class InvalidExpense(ValueError):
    pass


class GroupStore:
    def __init__(self, backend: GroupBackend):
        self.backend = backend

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def save_group(self, group: Group) -> Group:
        stamped = group.model_copy(update={"updated_at": now_ms()}, deep=True)
        self.backend.save_group(stamped)
        return stamped

    def get_group(self, group_id: str) -> Optional[Group]:
        return self.backend.get_group(group_id)

    def get_all_groups(self) -> List[Group]:
        return self.backend.get_all_groups()

    def get_groups_for(self, address: str) -> List[Group]:
        groups = [g for g in self.get_all_groups() if g.has_participant(address)]
        groups.sort(key=lambda g: g.created_at or 0, reverse=True)
        return groups

    def add_participant(self, group_id: str, participant: Participant) -> Optional[Group]:
        group = self.get_group(group_id)
        if not group:
            logging.warning("Group not found: %s", group_id)
            return None
        if group.has_participant(participant.address):
            return group
        group.participants.append(participant)
        saved = self.save_group(group)
        logging.info("Added participant %s to %s", participant.address, group_id)
        return saved

    def add_expense(self, group_id: str, expense: Expense) -> Optional[Group]:
        if not expense.split_among:
            raise InvalidExpense(f"expense {expense.id} has nobody to split among")
        group = self.get_group(group_id)
        if not group:
            logging.warning("Group not found: %s", group_id)
            return None
        group.expenses.append(expense)
        saved = self.save_group(group)
        logging.info("Added expense %s (%s) to %s", expense.id, expense.description, group_id)
        return saved

    def add_settlement(self, group_id: str, settlement: Settlement) -> Optional[Group]:
        group = self.get_group(group_id)
        if not group:
            logging.warning("Group not found: %s", group_id)
            return None
        group.settlements.append(settlement)
        saved = self.save_group(group)
        logging.info("Added settlement %s to %s", settlement.id, group_id)
        return saved

    def update_group_status(self, group_id: str, is_active: bool) -> Optional[Group]:
        if not self.get_group(group_id):
            logging.warning("Group not found: %s", group_id)
            return None
        self.backend.update_group_status(group_id, is_active, now_ms())
        return self.get_group(group_id)

    def delete_group(self, group_id: str) -> None:
        self.backend.delete_group(group_id)

    def subscribe_to_group(self, group_id: str, callback: GroupCallback) -> Unsubscribe:
        unsubscribe = self.backend.subscribe(group_id, callback)
        done = False

        def stop():
            nonlocal done
            if done:
                return
            done = True
            unsubscribe()

        return stop

    def close(self) -> None:
        self.backend.close()
