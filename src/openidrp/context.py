import logging
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union
from urllib.parse import parse_qsl
from urllib.parse import urlsplit
from wsgiref.util import request_uri

from openidrp.application import ApplicationState
from openidrp.exception import ArgumentInvalid

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class RequestContext(object):
    """
    What the relying party needs to know about the HTTP request it is handling.

    :param url: The absolute URL of the current request
    :param query: The name/value pairs of the query string of a GET request
        or the form of a POST request
    :param application_path: The path the web application is rooted at
    :param application: Process wide application state
    :param query_string_args: The arguments in the URL query string. Defaults
        to the ones parsed from url.
    """

    def __init__(self,
                 url: str,
                 query: Optional[Union[dict, List[Tuple[str, str]]]] = None,
                 application_path: Optional[str] = "/",
                 application: Optional[ApplicationState] = None,
                 query_string_args: Optional[List[Tuple[str, str]]] = None):
        if not url:
            raise ArgumentInvalid("A request context needs the URL of the request")

        self.url = url
        if query_string_args is None:
            query_string_args = parse_qsl(urlsplit(url).query, keep_blank_values=True)
        self.query_string_args = list(query_string_args)
        if query is None:
            query = self.query_string_args
        self.query = dict(query)
        self.application_path = application_path or "/"
        self.application = application

    @classmethod
    def from_environ(cls, environ: dict, application: Optional[ApplicationState] = None):
        """
        Build a context from a WSGI environment. The body of a form POST is
        consumed.
        """
        _url = request_uri(environ, include_query=True)
        _args = parse_qsl(environ.get("QUERY_STRING", ""), keep_blank_values=True)

        _query = _args
        if environ.get("REQUEST_METHOD", "GET").upper() == "POST":
            _content_type = environ.get("CONTENT_TYPE", "").split(";")[0].strip()
            if _content_type == FORM_CONTENT_TYPE:
                try:
                    _length = int(environ.get("CONTENT_LENGTH") or 0)
                except ValueError:
                    _length = 0
                _body = environ["wsgi.input"].read(_length) if _length else b""
                _query = parse_qsl(_body.decode("utf-8"), keep_blank_values=True)

        return cls(_url, query=_query, application_path=environ.get("SCRIPT_NAME") or "/",
                   application=application, query_string_args=_args)
