from dataclasses import dataclass


@dataclass(frozen=True)
class LogEntry:
    term: int
    command: str

    def as_dict(self) -> dict:
        return {
            "term": self.term,
            "command": self.command,
        }


class RaftLog:
    """This does not concern itself with *all* the rules around the append entries RPC.
    Things like: 'reply false if term < currentTerm' are out of scope.

    Indexing is 0-based, -1 stands for "before the first entry" (empty log, or prev_log_index of the very
    first AppendEntries). The term of that virtual entry is -1.
    """

    def __init__(self, log: list[LogEntry] | None = None):
        self.log = list(log) if log is not None else []

    def __len__(self):
        return len(self.log)

    def __getitem__(self, index: int | slice):
        if isinstance(index, int) and index < 0:
            # better crash than silently read from the end of the list
            raise ValueError("index should not be negative")
        return self.log[index]

    def __eq__(self, other):
        return isinstance(other, RaftLog) and self.log == other.log

    def __repr__(self):
        return f"RaftLog(log={self.log})"

    def copy(self) -> "RaftLog":
        # entries are immutable, a shallow copy is enough
        return RaftLog(self.log)

    def last_log_index(self) -> int:
        return len(self.log) - 1

    def last_log_term(self) -> int:
        return self.log[-1].term if self.log else -1

    def term_at(self, index: int) -> int:
        if 0 <= index < len(self.log):
            return self.log[index].term
        return -1

    def append(self, entry: LogEntry):
        self.log.append(entry)

    def append_entries(self, prev_index: int, prev_term: int, entries: list[LogEntry]) -> bool:
        if prev_index != -1 and (prev_index >= len(self.log) or self.log[prev_index].term != prev_term):
            return False

        # "if an existing entry conflicts with a new one (same index, different terms),
        # delete the existing entry and all that follow it."
        for entry_idx, entry in enumerate(entries):
            log_idx = (prev_index + 1) + entry_idx
            if log_idx >= len(self.log):
                self.log.extend(entries[entry_idx:])
                break

            if self.log[log_idx].term != entry.term:
                del self.log[log_idx:]
                self.log.extend(entries[entry_idx:])
                break

        return True

    def is_more_up_to_date(self, other_last_index: int, other_last_term: int) -> bool:
        """
        5.4.1 (end of section)
        If the logs have last entries with different terms, then the log with the later term is more up-to-date.
        If the logs end with the same term, then whichever log is longer is more up-to-date.
        """
        last_term = self.last_log_term()
        return last_term > other_last_term or (
            last_term == other_last_term and self.last_log_index() > other_last_index
        )


def log_to_str(raft_log: RaftLog) -> str:
    """Debug/testing utility"""
    if all(0 <= entry.term < 10 for entry in raft_log.log):
        return "".join([str(entry.term) for entry in raft_log.log])
    else:
        # not as nice but less ambiguous for when one wants to read very long logs.
        return ".".join([str(entry.term) for entry in raft_log.log])
