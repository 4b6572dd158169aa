# SPDX-License-Identifier: GPL-2.0-or-later
"""Waiting lines partitioned by region and playlist.

A partition is a plain set of account ids: membership is binary and no order
is kept, so any queued member may be picked first when a match starts.
"""

import logging
from typing import Dict, FrozenSet, Set, Tuple

from .tickets import QUEUED, TicketStore

Partition = Tuple[str, str]


class QueueEngine:
    def __init__(
        self,
        tickets: TicketStore,
        max_players_in_queue=1000,
        min_players_to_start=2,
    ):
        self.tickets = tickets
        self.max_players_in_queue = max_players_in_queue
        self.min_players_to_start = min_players_to_start
        self.partitions: Dict[Partition, Set[str]] = {}
        # Reverse index: account id -> the only partition it is queued in.
        self.membership: Dict[str, Partition] = {}
        tickets.removal_hooks.append(self.remove_from_queue)

    def partition_key(self, region, playlist) -> Partition:
        """Returns the partition of `region` and any alias of `playlist`."""
        return (
            str(region).upper(),
            self.tickets.game_modes.canonical_playlist(playlist),
        )

    def add_to_queue(self, account_id) -> bool:
        """Queues `account_id` in the partition of its ticket.

        Returns False if the account has no ticket or if the partition already
        holds the maximum number of queued players.
        """
        ticket = self.tickets.get_ticket(account_id)
        if ticket is None:
            logging.warning("cannot queue %s: no ticket", account_id)
            return False

        key = ticket.partition
        if self.membership.get(account_id) == key:
            return True
        queue = self.partitions.get(key, set())
        if len(queue) >= self.max_players_in_queue:
            return False

        # The ticket may have been replaced for another partition.
        self.remove_from_queue(account_id)
        queue.add(account_id)
        self.partitions[key] = queue
        self.membership[account_id] = key
        ticket.status = QUEUED
        logging.debug(
            "player %s added to queue %s:%s (%d players)",
            account_id,
            key[0],
            key[1],
            len(queue),
        )
        return True

    def remove_from_queue(self, account_id) -> bool:
        """Dequeues `account_id`. Empty partitions are dropped."""
        key = self.membership.pop(account_id, None)
        if key is None:
            return False
        queue = self.partitions.get(key)
        if queue is not None:
            queue.discard(account_id)
            if not queue:
                del self.partitions[key]
        logging.debug(
            "player %s removed from queue %s:%s", account_id, key[0], key[1]
        )
        return True

    def is_queued(self, account_id) -> bool:
        return account_id in self.membership

    def members(self, region, playlist) -> FrozenSet[str]:
        return frozenset(
            self.partitions.get(self.partition_key(region, playlist), ())
        )

    def get_queued_player_count(self, region, playlist) -> int:
        return len(
            self.partitions.get(self.partition_key(region, playlist), ())
        )

    def is_full(self, region, playlist) -> bool:
        return (
            self.get_queued_player_count(region, playlist)
            >= self.max_players_in_queue
        )

    def can_start_match(self, region, playlist) -> bool:
        """Quorum check: enough players queued in the partition."""
        return (
            self.get_queued_player_count(region, playlist)
            >= self.min_players_to_start
        )

    def pop_match(self, account_id) -> FrozenSet[str]:
        """Removes a quorum including `account_id` from its partition.

        The other members are picked arbitrarily. Returns the removed account
        ids, or an empty set if the partition has no quorum.
        """
        key = self.membership.get(account_id)
        if key is None or not self.can_start_match(*key):
            return frozenset()
        others = [
            member for member in self.partitions[key] if member != account_id
        ]
        group = {account_id, *others[: self.min_players_to_start - 1]}
        for member in group:
            self.remove_from_queue(member)
        logging.info(
            "match starting in %s:%s with %s", key[0], key[1], sorted(group)
        )
        return frozenset(group)

    def total_queued(self) -> int:
        return len(self.membership)
