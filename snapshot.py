"""Read-only views of the simulation, for whatever renders or describes the cluster.

Snapshots are value copies: holding on to one never gives access to the engine state.
"""
from dataclasses import dataclass

from raftconfig import NodeID
from raftconfig import NodeRole
from raftconfig import PacketType
from raftlog import LogEntry
from raftlogic import RaftNode
from rpc import Packet


@dataclass(frozen=True)
class NodeSnapshot:
    node_id: NodeID
    role: NodeRole
    current_term: int
    voted_for: NodeID | None
    log: tuple[LogEntry, ...]
    commit_index: int
    election_timeout: int
    current_timeout_duration: int
    heartbeat_timer: int
    next_index: tuple[tuple[NodeID, int], ...]
    match_index: tuple[tuple[NodeID, int], ...]

    @classmethod
    def from_node(cls, node: RaftNode) -> "NodeSnapshot":
        return cls(
            node_id=node.node_id,
            role=node.role,
            current_term=node.current_term,
            voted_for=node.voted_for,
            log=tuple(node.log.log),
            commit_index=node.commit_index,
            election_timeout=node.election_timeout,
            current_timeout_duration=node.current_timeout_duration,
            heartbeat_timer=node.heartbeat_timer,
            next_index=tuple(sorted(node.next_index.items())),
            match_index=tuple(sorted(node.match_index.items())),
        )

    @property
    def timeout_ratio(self) -> float:
        """Share of the election timeout still left, what a progress ring around the node would show."""
        if self.current_timeout_duration <= 0:
            return 0.0
        return max(0.0, min(1.0, self.election_timeout / self.current_timeout_duration))

    def as_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "role": self.role,
            "current_term": self.current_term,
            "voted_for": self.voted_for,
            "log": [entry.as_dict() for entry in self.log],
            "commit_index": self.commit_index,
            "election_timeout": self.election_timeout,
            "current_timeout_duration": self.current_timeout_duration,
            "heartbeat_timer": self.heartbeat_timer,
            "next_index": dict(self.next_index),
            "match_index": dict(self.match_index),
        }


@dataclass(frozen=True)
class PacketSnapshot:
    id: str
    source: NodeID
    dest: NodeID
    type: PacketType
    progress: float

    @classmethod
    def from_packet(cls, packet: Packet) -> "PacketSnapshot":
        return cls(id=packet.id, source=packet.source, dest=packet.dest, type=packet.type, progress=packet.progress)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "dest": self.dest,
            "type": self.type,
            "progress": self.progress,
        }


@dataclass(frozen=True)
class ClusterSnapshot:
    nodes: tuple[NodeSnapshot, ...]
    packets: tuple[PacketSnapshot, ...]
    paused: bool
    speed_multiplier: float
    tick: int

    def node(self, node_id: NodeID) -> NodeSnapshot:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        raise KeyError(node_id)

    def as_dict(self) -> dict:
        return {
            "nodes": [node.as_dict() for node in self.nodes],
            "packets": [packet.as_dict() for packet in self.packets],
            "paused": self.paused,
            "speed_multiplier": self.speed_multiplier,
            "tick": self.tick,
        }


@dataclass(frozen=True)
class LogDepth:
    node_id: NodeID
    log_length: int
    commit_index: int


@dataclass(frozen=True)
class ClusterSummary:
    total_nodes: int
    leader_id: NodeID | None
    current_term: int
    candidates: tuple[NodeID, ...]
    crashed_nodes: tuple[NodeID, ...]
    log_depths: tuple[LogDepth, ...]

    def as_dict(self) -> dict:
        return {
            "totalNodes": self.total_nodes,
            "leaderId": self.leader_id if self.leader_id is not None else "None",
            "currentTerm": self.current_term,
            "candidates": list(self.candidates),
            "crashedNodes": list(self.crashed_nodes),
            "logDepths": [
                {"id": depth.node_id, "logLength": depth.log_length, "commitIndex": depth.commit_index}
                for depth in self.log_depths
            ],
        }


def summarize(snapshot: ClusterSnapshot) -> ClusterSummary:
    leaders = [node for node in snapshot.nodes if node.role == "leader"]
    # a deposed leader may not have heard about the new term yet, the most recent one is the real one
    leader = max(leaders, key=lambda node: node.current_term) if leaders else None
    return ClusterSummary(
        total_nodes=len(snapshot.nodes),
        leader_id=leader.node_id if leader is not None else None,
        current_term=max((node.current_term for node in snapshot.nodes), default=0),
        candidates=tuple(node.node_id for node in snapshot.nodes if node.role == "candidate"),
        crashed_nodes=tuple(node.node_id for node in snapshot.nodes if node.role == "crashed"),
        log_depths=tuple(
            LogDepth(node_id=node.node_id, log_length=len(node.log), commit_index=node.commit_index)
            for node in snapshot.nodes
        ),
    )
