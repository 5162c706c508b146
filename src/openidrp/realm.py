import logging
from typing import Union
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

from openidrp.exception import ArgumentInvalid

logger = logging.getLogger(__name__)

WILDCARD_PREFIX = "*."
DEFAULT_PORTS = {"http": 80, "https": 443}


def _port(scheme, port):
    return port or DEFAULT_PORTS.get(scheme)


class Realm(object):
    """
    The trust root a relying party declares. The provider will only redirect
    the user back to return_to URLs that lie under the realm.
    A host starting with '*.' matches the host itself and every sub domain.
    """

    def __init__(self, url: Union[str, "Realm"]):
        if isinstance(url, Realm):
            url = url.url

        try:
            _part = urlsplit(url.strip())
            _port = _part.port
        except (AttributeError, ValueError) as err:
            raise ArgumentInvalid(f"Not a valid realm: {url}: {err}")

        if _part.scheme.lower() not in DEFAULT_PORTS:
            raise ArgumentInvalid(f"Realm must be an absolute http(s) URL: {url}")
        if _part.fragment:
            raise ArgumentInvalid(f"Realm may not contain a fragment: {url}")
        if not _part.hostname:
            raise ArgumentInvalid(f"Realm must contain a host: {url}")

        _host = _part.hostname
        _wildcard = _host.startswith(WILDCARD_PREFIX)
        if _wildcard:
            _host = _host[len(WILDCARD_PREFIX):]
        if not _host or "*" in _host:
            raise ArgumentInvalid(f"Wildcard only allowed as the left most label: {url}")

        _d = self.__dict__
        _d["url"] = url.strip()
        _d["scheme"] = _part.scheme.lower()
        _d["host"] = _host.lower()
        _d["port"] = _port
        _d["wildcard"] = _wildcard
        _d["absolute_path"] = _part.path or "/"

    def __setattr__(self, key, value):
        raise AttributeError("Realm is immutable")

    def __str__(self):
        return self.url

    def __repr__(self):
        return f"Realm({self.url!r})"

    def __eq__(self, other):
        if isinstance(other, Realm):
            return self.url == other.url
        return NotImplemented

    def __hash__(self):
        return hash(self.url)

    @property
    def url_with_wildcard_changed_to_www(self) -> str:
        """The URL used when a provider does relying party discovery against this realm."""
        if not self.wildcard:
            return self.url
        _netloc = f"www.{self.host}"
        if self.port:
            _netloc = f"{_netloc}:{self.port}"
        return urlunsplit((self.scheme, _netloc, self.absolute_path, "", ""))

    def contains(self, return_to: str) -> bool:
        """
        Whether return_to is a URL the provider may send the user back to
        under this realm.
        """
        try:
            _part = urlsplit(return_to)
            _rt_port = _port(_part.scheme.lower(), _part.port)
        except (AttributeError, ValueError):
            return False

        if _part.scheme.lower() != self.scheme:
            return False
        if _rt_port != _port(self.scheme, self.port):
            return False

        _host = (_part.hostname or "").lower()
        if self.wildcard:
            if _host != self.host and not _host.endswith(f".{self.host}"):
                return False
        elif _host != self.host:
            return False

        _path = _part.path or "/"
        if not _path.startswith(self.absolute_path):
            return False
        if len(_path) == len(self.absolute_path) or self.absolute_path.endswith("/"):
            return True
        return _path[len(self.absolute_path)] == "/"
