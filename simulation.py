import logging
import random
import threading

from raftconfig import SPEED_MULTIPLIER_MAX
from raftconfig import SPEED_MULTIPLIER_MIN
from raftconfig import NodeID
from raftconfig import SimulationConfig
from raftlog import LogEntry
from raftlogic import RaftNode
from raftlogic import advance_commit_index
from raftlogic import become_leader
from raftlogic import convert_to
from raftlogic import create_node
from raftlogic import handle_append_entries
from raftlogic import handle_append_entries_response
from raftlogic import handle_request_vote
from raftlogic import handle_request_vote_response
from raftlogic import has_quorum
from raftlogic import random_timeout
from raftlogic import replicate_to
from raftlogic import start_election
from rpc import Packet
from snapshot import ClusterSnapshot
from snapshot import NodeSnapshot
from snapshot import PacketSnapshot

logger = logging.getLogger(__name__)


class NoLeaderError(Exception):
    """Raised when a command is proposed while no node is leader. The simulation is left untouched."""


class Simulation:
    """The whole cluster, advanced one tick at a time.

    Each tick: packets move, the ones that arrived are handed to their destination node, then every live node
    ages its election (or heartbeat, for leaders) timer. Delivery always comes first so that a heartbeat arriving
    on the very tick a follower would have timed out still counts.

    All public methods take the same lock: ticking from a background thread while controlling the cluster from
    another one is fine, but a tick is never interleaved with a control operation.
    """

    def __init__(self, config: SimulationConfig | None = None, seed: int | None = None):
        self.config = config if config is not None else SimulationConfig()
        self.random = random.Random(seed)
        self.node_ids: list[NodeID] = list(range(self.config.node_count))
        self.nodes: dict[NodeID, RaftNode] = {
            node_id: create_node(node_id, self.random, self.config) for node_id in self.node_ids
        }
        self.packets: list[Packet] = []
        # votes granted to each node for its current election, does not include the self-vote.
        self.votes: dict[NodeID, set[NodeID]] = {node_id: set() for node_id in self.node_ids}
        self.paused = False
        self.speed_multiplier = 1.0
        self.clock = 0
        self._lock = threading.Lock()

    def __repr__(self):
        return f"Simulation(clock={self.clock}, nodes={list(self.nodes.values())}, packets={len(self.packets)})"

    def peers_of(self, node_id: NodeID) -> list[NodeID]:
        return [n_id for n_id in self.node_ids if n_id != node_id]

    def live_peers_of(self, node_id: NodeID) -> list[NodeID]:
        return [n_id for n_id in self.peers_of(node_id) if self.nodes[n_id].live]

    # -- control operations

    def tick(self):
        with self._lock:
            if self.paused:
                return
            self._tick()

    def run(self, ticks: int):
        for _ in range(ticks):
            self.tick()

    def step(self, ticks: int = 1):
        """Advance by hand, ignoring the pause flag. The lock is held for all the steps."""
        with self._lock:
            for _ in range(ticks):
                self._tick()

    def set_node_live(self, node_id: NodeID, live: bool) -> bool:
        with self._lock:
            node = self.nodes.get(node_id)
            if node is None:
                logger.warning("ignoring request to change unknown node %s", node_id)
                return False

            if live == node.live:
                return True

            node = node.copy()
            if live:
                convert_to(node, "follower")
                node.current_timeout_duration = random_timeout(self.random, self.config)
                node.election_timeout = node.current_timeout_duration
            else:
                convert_to(node, "crashed")
            self.votes[node_id] = set()
            self.nodes[node_id] = node
            return True

    def propose_entry(self, command: str) -> int:
        """Append a command to the leader's log, returns its index. Replication happens with the next heartbeat."""
        with self._lock:
            leader = self._current_leader()
            if leader is None:
                logger.warning("no leader elected, dropping command %r", command)
                raise NoLeaderError("no leader elected to propose entry")

            leader.log.append(LogEntry(term=leader.current_term, command=command))
            logger.info("Leader %s accepted %r at index %s", leader.node_id, command, leader.log.last_log_index())
            return leader.log.last_log_index()

    def set_paused(self, paused: bool):
        with self._lock:
            self.paused = paused

    def set_speed(self, multiplier: float) -> float:
        """Only affects packets sent from now on."""
        with self._lock:
            self.speed_multiplier = max(SPEED_MULTIPLIER_MIN, min(SPEED_MULTIPLIER_MAX, multiplier))
            return self.speed_multiplier

    def leader(self) -> NodeID | None:
        with self._lock:
            leader = self._current_leader()
            return leader.node_id if leader is not None else None

    def snapshot(self) -> ClusterSnapshot:
        with self._lock:
            return ClusterSnapshot(
                nodes=tuple(NodeSnapshot.from_node(self.nodes[node_id]) for node_id in self.node_ids),
                packets=tuple(PacketSnapshot.from_packet(packet) for packet in self.packets),
                paused=self.paused,
                speed_multiplier=self.speed_multiplier,
                tick=self.clock,
            )

    # -- internals, the lock is held

    def _current_leader(self) -> RaftNode | None:
        leaders = [node for node in self.nodes.values() if node.role == "leader"]
        if not leaders:
            return None
        return max(leaders, key=lambda node: node.current_term)

    def _tick(self):
        self.clock += 1

        arrived: list[Packet] = []
        surviving: list[Packet] = []
        for packet in self.packets:
            if packet.advance():
                arrived.append(packet)
            else:
                surviving.append(packet)
        self.packets = surviving

        for packet in arrived:
            self._deliver(packet)

        for node_id in self.node_ids:
            self._check_election_timer(node_id)
        for node_id in self.node_ids:
            self._check_heartbeat_timer(node_id)

    def _send(self, packets: list[Packet]):
        for packet in packets:
            packet.speed = self.config.packet_speed * self.speed_multiplier
            self.packets.append(packet)

    def _deliver(self, packet: Packet):
        node = self.nodes.get(packet.dest)
        if node is None or not node.live:
            logger.debug("dropping %s packet %s for unreachable node %s", packet.type, packet.id, packet.dest)
            return

        outgoing: list[Packet] = []
        votes = self.votes[node.node_id]
        match packet.type:
            case "RequestVote":
                updated, outgoing = handle_request_vote(node, packet)
            case "RequestVoteResponse":
                updated, votes = handle_request_vote_response(node, packet, votes, self.peers_of(node.node_id))
            case "AppendEntries":
                updated, outgoing = handle_append_entries(node, packet)
            case "AppendEntriesResponse":
                updated = handle_append_entries_response(node, packet, self.peers_of(node.node_id))
            case _:
                raise ValueError(f"unknown packet type: {packet.type}")

        check_invariants(node, updated)
        if updated.current_term != node.current_term or updated.role != "candidate":
            votes = set()
        self.votes[node.node_id] = votes
        self.nodes[node.node_id] = updated
        self._send(outgoing)

    def _check_election_timer(self, node_id: NodeID):
        node = self.nodes[node_id]
        match node.role:
            case "follower" | "candidate":
                node.election_timeout -= 1
                if node.election_timeout > 0:
                    return
                node, packets = start_election(node, self.live_peers_of(node_id), self.random, self.config)
                self.votes[node_id] = set()
                if has_quorum(self.votes[node_id], cluster_size=len(self.node_ids)):
                    # single node cluster, our own vote is enough
                    become_leader(node, self.peers_of(node_id))
                self.nodes[node_id] = node
                self._send(packets)
            case "leader" | "crashed":
                pass

    def _check_heartbeat_timer(self, node_id: NodeID):
        node = self.nodes[node_id]
        match node.role:
            case "leader":
                node.heartbeat_timer -= 1
                if node.heartbeat_timer > 0:
                    return
                node.heartbeat_timer = self.config.heartbeat_interval
                # in a single node cluster nobody ever answers, the leader's own log is the majority
                advance_commit_index(node, self.peers_of(node_id))
                self._send([replicate_to(node, peer) for peer in self.live_peers_of(node_id)])
            case "follower" | "candidate" | "crashed":
                pass


def check_invariants(before: RaftNode, after: RaftNode):
    """Sanity checks on a single packet delivery. Violations are bugs in the handlers, they are logged, not raised."""
    if after.current_term < before.current_term:
        logger.error("term of node %s went backwards: %s -> %s", after.node_id, before.current_term, after.current_term)
    if after.commit_index < before.commit_index:
        logger.error(
            "commit index of node %s went backwards: %s -> %s", after.node_id, before.commit_index, after.commit_index
        )
    if after.commit_index > after.log.last_log_index():
        logger.error("node %s committed entries it does not have: %s", after.node_id, after)
    if before.role == "leader" and after.role == "leader":
        if after.log[: len(before.log)] != before.log[:]:
            logger.error("Leader Append-Only property violated (figure 3) on node %s", after.node_id)
