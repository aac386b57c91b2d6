import uuid
from dataclasses import dataclass
from dataclasses import field
from typing import Union

from raftconfig import PACKET_SPEED
from raftconfig import NodeID
from raftconfig import PacketType
from raftlog import LogEntry

DELIVERED_AT = 100.0


@dataclass
class RequestVote:
    term: int
    candidate_id: NodeID
    last_log_index: int
    last_log_term: int

    def as_dict(self):
        return {
            "term": self.term,
            "candidate_id": self.candidate_id,
            "last_log_index": self.last_log_index,
            "last_log_term": self.last_log_term,
        }


@dataclass
class RequestVoteResponse:
    term: int
    vote_granted: bool

    def as_dict(self):
        return {
            "term": self.term,
            "vote_granted": self.vote_granted,
        }


@dataclass
class AppendEntries:
    term: int
    leader_id: NodeID
    prev_log_index: int
    prev_log_term: int
    entries: list[LogEntry]
    leader_commit: int

    def as_dict(self):
        return {
            "term": self.term,
            "leader_id": self.leader_id,
            "prev_log_index": self.prev_log_index,
            "prev_log_term": self.prev_log_term,
            "entries": [entry.as_dict() for entry in self.entries],
            "leader_commit": self.leader_commit,
        }


@dataclass
class AppendEntriesResponse:
    term: int
    success: bool
    match_index: int

    def as_dict(self):
        return {
            "term": self.term,
            "success": self.success,
            "match_index": self.match_index,
        }


Payload = Union[RequestVote, RequestVoteResponse, AppendEntries, AppendEntriesResponse]


def new_packet_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Packet:
    """A message on its way between two nodes.

    `id` is only there to tell packets apart in logs and snapshots, the protocol never looks at it.
    """

    source: NodeID
    dest: NodeID
    type: PacketType
    data: Payload
    progress: float = 0.0
    speed: float = PACKET_SPEED
    id: str = field(default_factory=new_packet_id)

    @classmethod
    def wrap(cls, source: NodeID, dest: NodeID, data: Payload) -> "Packet":
        # the payload class name doubles as the packet type
        return cls(source=source, dest=dest, type=data.__class__.__name__, data=data)

    def advance(self) -> bool:
        """Move the packet forward by one tick, returns True once it reached its destination."""
        self.progress += self.speed
        return self.arrived

    @property
    def arrived(self) -> bool:
        return self.progress >= DELIVERED_AT

    def as_dict(self):
        return {
            "id": self.id,
            "source": self.source,
            "dest": self.dest,
            "type": self.type,
            "data": self.data.as_dict(),
            "progress": self.progress,
            "speed": self.speed,
        }
