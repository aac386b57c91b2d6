import json
import logging
import random
import threading
import time
import traceback

from narrator import Narrator
from raftconfig import TICK_INTERVAL_S
from raftlog import log_to_str
from simulation import NoLeaderError
from simulation import Simulation
from snapshot import summarize

logger = logging.getLogger(__name__)

DEMO_COMMANDS = ["SET X=5", "ADD USER", "DEL DB", "INC Y", "MOV A->B"]

HELP = """commands:
  state               full cluster snapshot as json
  log                 one line per node: role, term, log, commit index
  tick [n]            advance n ticks by hand (works while paused)
  pause / resume
  speed <x>           packet speed multiplier
  crash <id> / revive <id>
  propose [command]   add a command to the leader's log
  explain             ask the narrator what is going on
  logging on|off"""


def describe_nodes(sim: Simulation) -> str:
    snapshot = sim.snapshot()
    lines = [f"tick {snapshot.tick}{' (paused)' if snapshot.paused else ''}, {len(snapshot.packets)} packets"]
    for node in snapshot.nodes:
        lines.append(
            f"node {node.node_id}: {node.role:<9} term={node.current_term} voted_for={node.voted_for} "
            f"log='{''.join(str(entry.term) for entry in node.log)}' commit={node.commit_index} "
            f"timeout={node.election_timeout}/{node.current_timeout_duration}"
        )
    return "\n".join(lines)


def execute(sim: Simulation, cmd: str, narrator: Narrator | None = None) -> str:
    cmd = cmd.strip()
    name, _, arg = cmd.partition(" ")
    arg = arg.strip()

    if name == "state":
        return json.dumps(sim.snapshot().as_dict(), indent=2)
    elif name == "log":
        return describe_nodes(sim)
    elif name == "tick":
        sim.step(int(arg) if arg else 1)
        return describe_nodes(sim)
    elif name == "pause":
        sim.set_paused(True)
        return "paused"
    elif name == "resume":
        sim.set_paused(False)
        return "running"
    elif name == "speed":
        return f"speed multiplier: {sim.set_speed(float(arg))}"
    elif name in ("crash", "revive"):
        node_id = int(arg)
        if not sim.set_node_live(node_id, live=name == "revive"):
            return f"no node {node_id}"
        return f"node {node_id} {'crashed' if name == 'crash' else 'revived'}"
    elif name == "propose":
        command = arg or random.choice(DEMO_COMMANDS)
        try:
            index = sim.propose_entry(command)
        except NoLeaderError:
            return "No Leader elected to propose entry!"
        return f"'{command}' appended at index {index} on leader {sim.leader()}"
    elif name == "explain":
        if narrator is None:
            return "no narrator configured"
        snapshot = sim.snapshot()
        return narrator.explain(summarize(snapshot), paused=snapshot.paused)
    elif cmd == "logging on":
        logging.disable(level=logging.NOTSET)
        return "logging on"
    elif cmd == "logging off":
        logging.disable(level=logging.INFO)
        return "logging off"
    elif name == "help":
        return HELP
    return "unknown command"


def run_ticks(sim: Simulation, stop: threading.Event):
    while not stop.is_set():
        sim.tick()
        time.sleep(TICK_INTERVAL_S)


def console(seed: int | None = None):
    logging.basicConfig(level=logging.INFO)
    # quiet by default, the cluster is chatty. 'logging on' to see it.
    logging.disable(level=logging.INFO)

    sim = Simulation(seed=seed)
    narrator = Narrator()
    stop = threading.Event()
    t = threading.Thread(target=run_ticks, args=(sim, stop), daemon=True)
    t.start()
    print(HELP)
    try:
        while True:
            leader = sim.leader()
            cmd = input(f"raft (leader: {leader if leader is not None else '-'})> ").strip()
            if cmd in ("quit", "exit"):
                break
            if not cmd:
                continue
            # noinspection PyBroadException
            try:
                print(execute(sim, cmd, narrator=narrator))
            except Exception:
                print(traceback.format_exc())
                continue
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        stop.set()
        t.join()
        narrator.close()
        logger.info("final state: %s", [log_to_str(node.log) for node in sim.nodes.values()])


def main():
    import sys

    if len(sys.argv) > 2:
        print("usage: raft-console [seed]\n" "you might want to use rlwrap as well for nicer input.")
        sys.exit(1)
    console(int(sys.argv[1]) if len(sys.argv) == 2 else None)


if __name__ == "__main__":
    main()
