from typing import Callable
from typing import List
from typing import Optional
from typing import Tuple
from urllib.parse import parse_qsl
from urllib.parse import urlencode
from urllib.parse import urlsplit
from urllib.parse import urlunsplit


def query_args(url: str) -> List[Tuple[str, str]]:
    return parse_qsl(urlsplit(url).query, keep_blank_values=True)


def append_query_args(url: str, args: List[Tuple[str, str]]) -> str:
    """
    Add arguments to the query part of a URL, keeping the ones already there.
    """
    if not args:
        return url
    _part = urlsplit(url)
    _query = urlencode(args)
    if _part.query:
        _query = f"{_part.query}&{_query}"
    return urlunsplit((_part.scheme, _part.netloc, _part.path, _query, _part.fragment))


def replace_query(url: str, args: List[Tuple[str, str]], path: Optional[str] = None) -> str:
    """
    Replace the query of a URL, and optionally its path.
    """
    _part = urlsplit(url)
    return urlunsplit((_part.scheme, _part.netloc, _part.path if path is None else path,
                       urlencode(args), _part.fragment))


def drop_query_args(url: str, should_drop: Callable[[str], bool]) -> str:
    return replace_query(url, [(k, v) for k, v in query_args(url) if not should_drop(k)])
