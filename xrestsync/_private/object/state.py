import threading
from contextlib import contextmanager
from copy import deepcopy
from typing import Optional

from xrestsync.common.types import JsonDict


class ReadWriteLock:
    """ Many readers or one writer. A waiting writer blocks new readers, so it can't starve. """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PrivateObjectState:
    """ This class is used as a private repository to store the documents and id of an
        `xrestsync.remote.api_object.APIObject`.

        Everything in here is guarded by `PrivateObjectState.lock`.
    """

    def __init__(self, data: JsonDict, object_id: str = ""):
        self.data = data
        self.object_id = object_id
        self.api_data = {}
        self.lock = ReadWriteLock()

    lock: ReadWriteLock

    object_id: str = ""
    """ Empty string when the id is not known (yet, or anymore). """

    data: JsonDict
    """ The declared document. """

    api_data: JsonDict
    """ Decoded version of `PrivateObjectState.api_response`. """

    api_response: Optional[str] = None
    """ Raw body of the last response that was adopted. """

    create_response: Optional[str] = None
    """ Raw body of the CREATE response, set once and never overwritten. """

    def snapshot(self) -> dict:
        with self.lock.read():
            return {
                "id": self.object_id,
                "data": deepcopy(self.data),
                "api_data": deepcopy(self.api_data),
                "api_response": self.api_response,
                "create_response": self.create_response,
            }
