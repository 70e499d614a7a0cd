"""
Per-student operation locks

Serializes mutations of one student profile inside this process. Writers in
other processes are covered by the row lock and the version check.
"""
import asyncio
import weakref


class StudentLocks:
    """
    Registry of asyncio locks keyed by operation and identifiers.

    Entries are weak: a lock stays registered while a holder or waiter keeps
    a reference to it and is dropped once nobody does.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, operation: str, *identifiers: str) -> asyncio.Lock:
        """
        Get or create a lock for an operation on specific entities.

        Args:
            operation: Operation family, e.g. "student"
            identifiers: Entity ids making up the key

        Returns:
            The same asyncio.Lock for the same key while it is in use
        """
        key = f"{operation}:{':'.join(identifiers)}"
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def for_student(self, student_id: str) -> asyncio.Lock:
        return self.get("student", student_id)

    def __len__(self) -> int:
        return len(self._locks)
