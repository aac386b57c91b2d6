import logging
import random
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace

from raftconfig import NodeID
from raftconfig import NodeRole
from raftconfig import SimulationConfig
from raftlog import RaftLog
from raftlog import log_to_str
from rpc import AppendEntries
from rpc import AppendEntriesResponse
from rpc import Packet
from rpc import RequestVote
from rpc import RequestVoteResponse

logger = logging.getLogger(__name__)


@dataclass
class RaftNode:
    node_id: NodeID
    role: NodeRole = "follower"

    # "persisted", all servers. Nothing is written to disk, a crash only freezes these.
    current_term: int = 0
    voted_for: NodeID | None = None
    log: RaftLog = field(default_factory=RaftLog)

    # volatile, all servers
    commit_index: int = -1
    # ticks left before starting an election, and the randomized duration it was last reset to
    election_timeout: int = 0
    current_timeout_duration: int = 0

    # volatile, on leaders only
    # for each server, index of the next log entry to send to that server
    next_index: dict[NodeID, int] = field(default_factory=dict)
    # for each server, index of highest log entry known to be replicated on that server
    match_index: dict[NodeID, int] = field(default_factory=dict)
    heartbeat_timer: int = 0

    def __repr__(self):
        return (
            f"RaftNode(node_id={self.node_id}, role='{self.role}', term={self.current_term}, "
            f"log={log_to_str(self.log)}, commit_index={self.commit_index})"
        )

    def copy(self) -> "RaftNode":
        return replace(
            self, log=self.log.copy(), next_index=dict(self.next_index), match_index=dict(self.match_index)
        )

    @property
    def live(self) -> bool:
        return self.role != "crashed"


def random_timeout(rng: random.Random, config: SimulationConfig) -> int:
    return rng.randint(config.election_timeout_min, config.election_timeout_max)


def create_node(node_id: NodeID, rng: random.Random, config: SimulationConfig) -> RaftNode:
    # both values are drawn independently so that nodes don't all time out together
    return RaftNode(
        node_id=node_id,
        election_timeout=random_timeout(rng, config),
        current_timeout_duration=random_timeout(rng, config),
    )


def assert_transition_allowed(role: NodeRole, new_role: NodeRole):
    if role != "crashed" and new_role == "crashed":
        return
    if (role, new_role) not in {
        ("follower", "follower"),
        ("follower", "candidate"),
        ("candidate", "candidate"),
        ("candidate", "leader"),
        ("candidate", "follower"),
        ("leader", "follower"),
        ("crashed", "follower"),
    }:
        logger.error("forbidden transition from %s to %s detected!", role, new_role)


def convert_to(node: RaftNode, new_role: NodeRole):
    assert_transition_allowed(node.role, new_role)
    if node.role != new_role:
        logger.info("Node %s converting to %s", node, new_role)
    node.role = new_role


def rule_check_term(node: RaftNode, term: int) -> bool:
    # figure 2 'Rules for servers':
    # "If RPC request or response contains term T > currentTerm, set currentTerm = T, convert to follower"
    if term > node.current_term:
        node.current_term = term
        node.voted_for = None
        convert_to(node, "follower")
        return True
    return False


def has_quorum(votes: set[NodeID], cluster_size: int) -> bool:
    # +1: candidates always vote for themselves
    return len(votes) + 1 > cluster_size / 2


def compute_commit_index(own_last_index: int, match_indexes: list[int]) -> int:
    """Highest index stored on a majority of the cluster (the leader counts as one of the servers)."""
    indexes = sorted([own_last_index, *match_indexes], reverse=True)
    return indexes[len(indexes) // 2]


def handle_request_vote(node: RaftNode, packet: Packet) -> tuple[RaftNode, list[Packet]]:
    msg: RequestVote = packet.data
    node = node.copy()

    match node.role:
        case "crashed":
            return node, []
        case "follower" | "candidate" | "leader":
            pass

    # adopting the term first: a candidate with a higher term is never rejected only for being ahead of us.
    rule_check_term(node, msg.term)

    # figure 2 'RequestVote RPC'
    vote_granted = (
        msg.term >= node.current_term
        and (node.voted_for is None or node.voted_for == msg.candidate_id)
        and not node.log.is_more_up_to_date(other_last_index=msg.last_log_index, other_last_term=msg.last_log_term)
    )

    if vote_granted:
        node.voted_for = msg.candidate_id
        node.election_timeout = node.current_timeout_duration

    reply = Packet.wrap(
        source=node.node_id,
        dest=msg.candidate_id,
        data=RequestVoteResponse(term=node.current_term, vote_granted=vote_granted),
    )
    return node, [reply]


def handle_append_entries(node: RaftNode, packet: Packet) -> tuple[RaftNode, list[Packet]]:
    msg: AppendEntries = packet.data
    node = node.copy()

    match node.role:
        case "crashed":
            return node, []
        case "follower" | "candidate" | "leader":
            pass

    if msg.term >= node.current_term:
        # legitimate leader request. The vote is only forgotten when the term moves forward: within a term we
        # keep remembering who we voted for.
        rule_check_term(node, msg.term)
        convert_to(node, "follower")
        node.election_timeout = node.current_timeout_duration

        success = node.log.append_entries(
            prev_index=msg.prev_log_index, prev_term=msg.prev_log_term, entries=msg.entries
        )
        # never commit beyond what we actually store
        new_commit_index = min(msg.leader_commit, node.log.last_log_index())
        if success and new_commit_index > node.commit_index:
            node.commit_index = new_commit_index
    else:
        logger.info("Node %s rejecting stale AppendEntries from term %s", node.node_id, msg.term)
        success = False

    # only the prefix checked against the leader is known to match, entries past it may be leftovers of an older term
    match_index = msg.prev_log_index + len(msg.entries) if success else node.log.last_log_index()
    reply = Packet.wrap(
        source=node.node_id,
        dest=msg.leader_id,
        data=AppendEntriesResponse(term=node.current_term, success=success, match_index=match_index),
    )
    return node, [reply]


def handle_request_vote_response(
    node: RaftNode, packet: Packet, votes: set[NodeID], peers: list[NodeID]
) -> tuple[RaftNode, set[NodeID]]:
    """Returns the updated node and its vote tracker for the current election."""
    msg: RequestVoteResponse = packet.data
    node = node.copy()
    votes = set(votes)

    if rule_check_term(node, msg.term):
        return node, set()

    match node.role:
        case "candidate":
            # need to double-check the term is correct to avoid using an old, delayed message
            if msg.vote_granted and msg.term == node.current_term:
                votes.add(packet.source)
                if has_quorum(votes, cluster_size=len(peers) + 1):
                    # I deserve this promotion.
                    become_leader(node, peers)
                    votes = set()
        case "follower" | "leader" | "crashed":
            # nothing to do: we're already leader or we reverted back to follower
            pass

    return node, votes


def handle_append_entries_response(node: RaftNode, packet: Packet, peers: list[NodeID]) -> RaftNode:
    msg: AppendEntriesResponse = packet.data
    source = packet.source
    node = node.copy()

    if rule_check_term(node, msg.term):
        return node

    match node.role:
        case "leader":
            if msg.term != node.current_term:
                return node
            if msg.success:
                # 'max' so that a delayed response can't move our knowledge of the follower backwards.
                node.match_index[source] = max(node.match_index.get(source, -1), msg.match_index)
                node.next_index[source] = node.match_index[source] + 1
                advance_commit_index(node, peers)
            else:
                # retried with an earlier prev_log_index on the next heartbeat.
                node.next_index[source] = max(node.next_index.get(source, len(node.log)) - 1, 0)
        case "follower" | "candidate" | "crashed":
            # not leader anymore = not this node's problem
            pass

    return node


def advance_commit_index(node: RaftNode, peers: list[NodeID]):
    new_commit_index = compute_commit_index(
        node.log.last_log_index(), [node.match_index.get(peer, -1) for peer in peers]
    )
    # see section 5.4.2 in the paper, an entry replicated on a majority of servers can't be
    # committed unless an entry from this leader's term has been committed.
    if new_commit_index > node.commit_index and node.log.term_at(new_commit_index) == node.current_term:
        logger.info("Leader %s committing up to index %s", node.node_id, new_commit_index)
        node.commit_index = new_commit_index


def become_leader(node: RaftNode, peers: list[NodeID]):
    convert_to(node, "leader")
    # fire on the next timer check
    node.heartbeat_timer = 0
    node.next_index = {peer: len(node.log) for peer in peers}
    # -1: nothing is known to be replicated yet
    node.match_index = {peer: -1 for peer in peers}


def start_election(
    node: RaftNode, live_peers: list[NodeID], rng: random.Random, config: SimulationConfig
) -> tuple[RaftNode, list[Packet]]:
    node = node.copy()
    # note we might convert from candidate to candidate: this starts a new election
    convert_to(node, "candidate")
    node.current_term += 1
    node.voted_for = node.node_id
    node.current_timeout_duration = random_timeout(rng, config)
    node.election_timeout = node.current_timeout_duration
    logger.info("Node %s starting election for term %s", node.node_id, node.current_term)
    return node, [request_vote(node, peer) for peer in live_peers]


def request_vote(node: RaftNode, peer: NodeID) -> Packet:
    return Packet.wrap(
        source=node.node_id,
        dest=peer,
        data=RequestVote(
            term=node.current_term,
            candidate_id=node.node_id,
            last_log_index=node.log.last_log_index(),
            last_log_term=node.log.last_log_term(),
        ),
    )


def replicate_to(node: RaftNode, peer: NodeID) -> Packet:
    # when next_index is past the end of our log this is a probe: no entries, a prev_log_term that can't match.
    next_index = node.next_index.get(peer, len(node.log))
    prev_log_index = next_index - 1
    return Packet.wrap(
        source=node.node_id,
        dest=peer,
        data=AppendEntries(
            term=node.current_term,
            leader_id=node.node_id,
            prev_log_index=prev_log_index,
            prev_log_term=node.log.term_at(prev_log_index),
            entries=node.log[next_index:],
            leader_commit=node.commit_index,
        ),
    )
