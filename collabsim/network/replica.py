# Copyright 2026 Lys-David Louis-Charles (KatchDaVizion)
# collabsim Op-log Replica
#
# Operation-based replicated log used as a convergence target for the
# network simulator. Each local append becomes an Operation stamped with
# a Lamport timestamp. Replicas apply remote operations idempotently and
# order the log by (lamport, replica_id), so any delivery order, with or
# without duplicates, converges to the same sequence.

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from collabsim.network.simulator import ReplicaId


@dataclass(frozen=True)
class Operation:
    replica_id: ReplicaId
    lamport: int
    value: Any

    @property
    def op_id(self) -> Tuple[int, ReplicaId]:
        return (self.lamport, self.replica_id)


class OpLogReplica:
    """A replica of an append-only, totally ordered log."""

    def __init__(self, replica_id: ReplicaId):
        self.replica_id = replica_id
        self.lamport = 0
        self._ops: Dict[Tuple[int, ReplicaId], Operation] = {}
        self.duplicates_ignored = 0

    def append(self, value: Any) -> Operation:
        """Apply a local edit and return the operation to broadcast."""
        self.lamport += 1
        op = Operation(self.replica_id, self.lamport, value)
        self._ops[op.op_id] = op
        return op

    def apply(self, ops: Iterable[Operation]) -> int:
        """Apply remote operations. Returns how many were new."""
        applied = 0
        for op in ops:
            if op.op_id in self._ops:
                self.duplicates_ignored += 1
                continue
            self._ops[op.op_id] = op
            self.lamport = max(self.lamport, op.lamport)
            applied += 1
        return applied

    def values(self) -> List[Any]:
        return [self._ops[key].value for key in sorted(self._ops)]

    def __len__(self) -> int:
        return len(self._ops)
