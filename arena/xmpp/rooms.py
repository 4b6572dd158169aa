# SPDX-License-Identifier: GPL-2.0-or-later
"""Party rooms (multi-user chats named ``party-*``)."""

import dataclasses
import logging
import time
from typing import Dict, List, Optional


def room_name(jid) -> str:
    """``party-x@muc.domain/nick`` -> ``party-x``"""
    return (jid or '').split('@', 1)[0]


def is_party_room(name) -> bool:
    return name.lower().startswith('party-')


@dataclasses.dataclass
class Room:
    name: str
    members: List[str] = dataclasses.field(default_factory=list)
    created_at: float = dataclasses.field(default_factory=time.time)


class RoomRegistry:
    def __init__(self):
        self.rooms: Dict[str, Room] = {}

    def __len__(self):
        return len(self.rooms)

    def get(self, name) -> Optional[Room]:
        return self.rooms.get(name)

    def join(self, name, account_id) -> Optional[Room]:
        """Adds `account_id` to room `name`, creating it on first join.

        Returns None if `name` is not a party room or if the account is
        already a member.
        """
        if not is_party_room(name):
            logging.warning("refused to join non party room %s", name)
            return None
        room = self.rooms.setdefault(name, Room(name))
        if account_id in room.members:
            return None
        room.members.append(account_id)
        logging.info("%s joined room %s", account_id, name)
        return room

    def leave(self, name, account_id) -> bool:
        room = self.rooms.get(name)
        if room is None or account_id not in room.members:
            return False
        room.members.remove(account_id)
        if not room.members:
            del self.rooms[name]
        logging.info("%s left room %s", account_id, name)
        return True

    def leave_all(self, account_id) -> List[str]:
        left = [
            name
            for name, room in list(self.rooms.items())
            if account_id in room.members
        ]
        for name in left:
            self.leave(name, account_id)
        return left
