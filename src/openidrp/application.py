import logging
import threading
from typing import Any
from typing import Callable
from typing import Optional

logger = logging.getLogger(__name__)

_MISSING = object()


class ApplicationState(object):
    """
    State shared by every request a web application handles during the life
    time of the process. Values are published once and then reused.
    """

    def __init__(self):
        self._state = {}
        self._lock = threading.Lock()

    def __contains__(self, key):
        return key in self._state

    def __getitem__(self, key):
        return self._state[key]

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._state.get(key, default)

    def __setitem__(self, key, value):
        with self._lock:
            self._state[key] = value

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
        """
        Return the value published under key, creating and publishing it with
        factory() if there is none. Concurrent first callers will see exactly
        one value and factory will only be called once.

        :param key: Name under which the value is published
        :param factory: Callable that returns a new value
        """
        value = self._state.get(key, _MISSING)
        if value is _MISSING:
            with self._lock:
                value = self._state.get(key, _MISSING)
                if value is _MISSING:
                    logger.debug(f"Creating application state item: {key}")
                    value = factory()
                    self._state[key] = value
        return value

    def reset(self):
        with self._lock:
            self._state.clear()
