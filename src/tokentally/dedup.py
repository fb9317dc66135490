import threading


class DeduplicationStore:
    """
    DeduplicationStore: Is a thread-safe store for tracking
    already counted claude messages.

    The chat assistant writes the same assistant message to more
    than one log file (resumed and forked sessions), so a single
    store must be shared by every file parsed in one run. Records
    that don't carry both a message id and a request id can't be
    identified and are always treated as new.
    """

    def __init__(self) -> "None":
        self._lock: "threading.Lock" = threading.Lock()
        self._seen: "set[str]" = set()

    @staticmethod
    def make_key(message_id: "str | None", request_id: "str | None") -> "str | None":
        """
        constructs the dedup key for a message, or None when either
        id is missing.
        """
        if not message_id or not request_id:
            return None
        return f"{message_id}:{request_id}"

    def is_new(self, message_id: "str | None", request_id: "str | None") -> "bool":
        """
        checks if the given message is new. If so, mark it as seen
        and returns True.
        """
        key = self.make_key(message_id, request_id)
        if key is None:
            return True

        with self._lock:
            if key in self._seen:
                return False

            self._seen.add(key)
            return True

    def __len__(self) -> "int":
        with self._lock:
            return len(self._seen)
