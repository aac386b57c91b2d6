# Cluster and timing parameters of the simulation. Everything is expressed in
# ticks: one call to Simulation.tick() is one unit of time.
from dataclasses import dataclass
from typing import Literal

NodeID = int
NodeRole = Literal["follower", "candidate", "leader", "crashed"]
PacketType = Literal["RequestVote", "RequestVoteResponse", "AppendEntries", "AppendEntriesResponse"]

NODE_COUNT = 5

# the paper mentions 'election timeouts are chosen randomly from a fixed interval (e.g. 150-300ms)'
ELECTION_TIMEOUT_TICKS_MIN = 150
ELECTION_TIMEOUT_TICKS_MAX = 300
HEARTBEAT_INTERVAL_TICKS = 50

# progress points per tick, a packet is delivered at 100.
PACKET_SPEED = 1.5
SPEED_MULTIPLIER_MIN = 0.5
SPEED_MULTIPLIER_MAX = 5.0

# wall clock cadence used when the simulation runs interactively
TICK_INTERVAL_S = 0.03


@dataclass(frozen=True)
class SimulationConfig:
    node_count: int = NODE_COUNT
    election_timeout_min: int = ELECTION_TIMEOUT_TICKS_MIN
    election_timeout_max: int = ELECTION_TIMEOUT_TICKS_MAX
    heartbeat_interval: int = HEARTBEAT_INTERVAL_TICKS
    packet_speed: float = PACKET_SPEED

    def __post_init__(self):
        if self.node_count < 1:
            raise ValueError("a cluster needs at least one node")
        if not 0 < self.election_timeout_min <= self.election_timeout_max:
            raise ValueError("invalid election timeout range")
        if self.heartbeat_interval < 1 or self.packet_speed <= 0:
            raise ValueError("heartbeat interval and packet speed must be positive")
