# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Network Simulator
#
# In-memory message bus between a fixed set of replicas. Models an
# asynchronous network that is:
#   - unordered across senders
#   - in-order per sender
#   - lossless, but duplicating (every message arrives 1-3 times)
#
# Every random choice (copy count, insertion position, drain length) is
# drawn from the injected PRNG, so equal seeds and equal call sequences
# produce identical inboxes.
#
# Typical loop:
#   network = Network(seeded_rng(seed))
#   for rid in range(3): network.add_peer(rid)
#   network.broadcast(0, ops)
#   while not network.is_idle():
#       for rid in network.peers: replicas[rid].apply(network.receive(rid))

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Tuple, TypeVar

from collabsim.network.rng import Rng, gen_range

logger = logging.getLogger(__name__)

T = TypeVar("T")
ReplicaId = int

MIN_COPIES = 1
MAX_COPIES = 3


@dataclass(frozen=True)
class Envelope(Generic[T]):
    """A message paired with the replica that broadcast it."""
    message: T
    sender: ReplicaId


class Network(Generic[T]):
    """Seeded simulator of a reordering, duplicating network."""

    def __init__(self, rng: Rng):
        self._rng = rng
        self._inboxes: Dict[ReplicaId, List[Envelope[T]]] = {}
        self._all_messages: List[T] = []

    def add_peer(self, replica_id: ReplicaId) -> None:
        if replica_id in self._inboxes:
            raise ValueError(f"Replica {replica_id} is already registered")
        self._inboxes[replica_id] = []

    @property
    def peers(self) -> List[ReplicaId]:
        """Registered replica ids, ascending."""
        return sorted(self._inboxes)

    @property
    def all_messages(self) -> List[T]:
        """Every broadcast message in issue order, without duplicates."""
        return list(self._all_messages)

    def inbox(self, replica_id: ReplicaId) -> Tuple[Envelope[T], ...]:
        return tuple(self._inboxes[replica_id])

    def is_idle(self) -> bool:
        return all(not inbox for inbox in self._inboxes.values())

    def has_unreceived(self, receiver: ReplicaId) -> bool:
        return bool(self._inboxes[receiver])

    def broadcast(self, sender: ReplicaId, messages: List[T]) -> None:
        """Deliver 1-3 copies of each message to every other replica.

        Copies land at random positions, but never before the last envelope
        this sender already has in that inbox, so a receiver can never see
        two messages from one sender out of order.
        """
        messages = list(messages)
        for replica_id in self.peers:
            if replica_id == sender:
                continue
            inbox = self._inboxes[replica_id]
            for message in messages:
                min_index = _after_last_from(inbox, sender)
                copies = gen_range(self._rng, MIN_COPIES, MAX_COPIES + 1)
                for _ in range(copies):
                    index = gen_range(self._rng, min_index, len(inbox) + 1)
                    inbox.insert(index, Envelope(copy.deepcopy(message), sender))
        self._all_messages.extend(messages)
        logger.debug(f"Replica {sender} broadcast {len(messages)} messages")

    def receive(self, receiver: ReplicaId) -> List[T]:
        """Drain a random-length prefix (possibly empty, possibly all) of the inbox."""
        inbox = self._inboxes[receiver]
        count = gen_range(self._rng, 0, len(inbox) + 1)
        drained = inbox[:count]
        del inbox[:count]
        if drained:
            logger.debug(f"Replica {receiver} received {count} messages, {len(inbox)} pending")
        return [envelope.message for envelope in drained]


def _after_last_from(inbox: List[Envelope[Any]], sender: ReplicaId) -> int:
    """Index just past the last envelope from sender, or 0."""
    for index in range(len(inbox) - 1, -1, -1):
        if inbox[index].sender == sender:
            return index + 1
    return 0
