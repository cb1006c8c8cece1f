import numpy as np


class SolutionHistoryWindow:
    """Fixed-capacity FIFO of solution increments.

    The window owns ``capacity`` preallocated fields arranged as a ring. A push
    hands the caller's field over to the window and hands back a field the
    caller may reuse: the evicted oldest entry once the window is full, a spare
    slot before that. No field contents are copied and nothing is allocated
    after construction.

    Indexing is oldest-first, ``window[0]`` is the oldest stored increment.
    """

    def __init__(self, capacity: int, shape) -> None:
        self.capacity = int(capacity)
        self.shape = tuple(shape)
        self._slots = [np.zeros(self.shape) for _ in range(self.capacity)]
        self._start = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def __getitem__(self, i: int) -> np.ndarray:
        if i < 0:
            i += self._count
        if not 0 <= i < self._count:
            raise IndexError("history index out of range")
        return self._slots[(self._start + i) % self.capacity]

    def __iter__(self):
        for i in range(self._count):
            yield self[i]

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    def push(self, delta: np.ndarray) -> np.ndarray:
        """Store ``delta`` and return a released buffer of the same shape."""
        if delta.shape != self.shape:
            raise ValueError(f"expected field of shape {self.shape}, got {delta.shape}")
        if self.is_full:
            released = self._slots[self._start]
            self._slots[self._start] = delta
            self._start = (self._start + 1) % self.capacity
        else:
            idx = (self._start + self._count) % self.capacity
            released = self._slots[idx]
            self._slots[idx] = delta
            self._count += 1
        return released

    def latest(self) -> np.ndarray:
        return self[self._count - 1]

    def reset(self, keep_latest: bool = True) -> None:
        """Discard the history, optionally keeping the most recent increment."""
        if keep_latest and self._count > 0:
            last = (self._start + self._count - 1) % self.capacity
            self._slots[0], self._slots[last] = self._slots[last], self._slots[0]
            self._count = 1
        else:
            self._count = 0
        self._start = 0

    def as_matrix(self) -> np.ndarray:
        """Increments as columns of a ``(field size, len(self))`` matrix."""
        if self._count == 0:
            return np.empty((int(np.prod(self.shape)), 0))
        return np.column_stack([field.reshape(-1) for field in self])
