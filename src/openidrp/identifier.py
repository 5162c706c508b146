import logging
from typing import Union
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

from openidrp.exception import InvalidIdentifier

logger = logging.getLogger(__name__)

XRI_GLOBAL_CONTEXT_SYMBOLS = ("=", "@", "+", "$", "!", "(")
XRI_SCHEME = "xri://"
ALLOWED_URI_SCHEMES = ("http", "https")


class Identifier(object):
    """
    Something a user claims to be. Either a URL or an XRI (i-name).
    Instances are immutable, use Identifier.parse() to create them.
    """

    def __init__(self, value: str):
        object.__setattr__(self, "_value", value)

    def __setattr__(self, key, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    @property
    def value(self) -> str:
        return self._value

    def __str__(self):
        return self._value

    def __repr__(self):
        return f"{self.__class__.__name__}({self._value!r})"

    def __eq__(self, other):
        if isinstance(other, Identifier):
            return self._value == other._value
        if isinstance(other, str):
            return self._value == other
        return NotImplemented

    def __hash__(self):
        return hash(self._value)

    @staticmethod
    def parse(identifier: Union[str, "Identifier"]) -> "Identifier":
        if isinstance(identifier, Identifier):
            return identifier
        if identifier is None:
            raise InvalidIdentifier("No identifier given")

        _text = identifier.strip()
        if not _text:
            raise InvalidIdentifier("Empty identifier")

        if _text.lower().startswith(XRI_SCHEME) or _text.startswith(XRI_GLOBAL_CONTEXT_SYMBOLS):
            return XriIdentifier(_text)
        return UriIdentifier(_text)

    @staticmethod
    def is_valid(identifier: str) -> bool:
        """Syntax check only, nothing is looked up."""
        try:
            Identifier.parse(identifier)
        except InvalidIdentifier:
            return False
        return True


class UriIdentifier(Identifier):

    def __init__(self, uri: str):
        Identifier.__init__(self, normalize_uri(uri))

    @property
    def scheme(self) -> str:
        return urlsplit(self.value).scheme

    @property
    def host(self) -> str:
        return urlsplit(self.value).hostname or ""


class XriIdentifier(Identifier):

    def __init__(self, xri: str):
        _xri = xri.strip()
        if _xri.lower().startswith(XRI_SCHEME):
            _xri = _xri[len(XRI_SCHEME):]
        if not _xri or not _xri.startswith(XRI_GLOBAL_CONTEXT_SYMBOLS):
            raise InvalidIdentifier(f"Not a valid XRI: {xri}")
        if any(c.isspace() for c in _xri):
            raise InvalidIdentifier(f"Not a valid XRI: {xri}")
        Identifier.__init__(self, _xri)

    @property
    def canonical(self) -> str:
        return f"{XRI_SCHEME}{self.value}"


def normalize_uri(uri: str) -> str:
    """
    Normalize a user supplied URL as described in OpenID 2.0 section 7.2.
    A missing scheme becomes http, scheme and host are lower cased, the
    fragment is dropped and an empty path becomes '/'.
    """
    _uri = uri.strip()
    if "://" not in _uri:
        _uri = f"http://{_uri}"

    try:
        _part = urlsplit(_uri)
        _port = _part.port
    except ValueError as err:
        raise InvalidIdentifier(f"Not a valid URL: {uri}: {err}")

    _scheme = _part.scheme.lower()
    if _scheme not in ALLOWED_URI_SCHEMES:
        raise InvalidIdentifier(f"Unsupported scheme in identifier: {uri}")
    if not _part.hostname:
        raise InvalidIdentifier(f"No host in identifier: {uri}")
    if any(c.isspace() for c in _uri):
        raise InvalidIdentifier(f"Not a valid URL: {uri}")

    _host = _part.hostname.lower()
    _netloc = f"[{_host}]" if ":" in _host else _host
    if _port:
        _netloc = f"{_netloc}:{_port}"
    if _part.username:
        _userinfo = _part.username
        if _part.password:
            _userinfo = f"{_userinfo}:{_part.password}"
        _netloc = f"{_userinfo}@{_netloc}"

    return urlunsplit((_scheme, _netloc, _part.path or "/", _part.query, ""))
