import logging
import threading
from typing import Callable
from typing import Mapping
from typing import Optional
from typing import Union
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

import requests

from openidrp.application import ApplicationState
from openidrp.configure import build_component
from openidrp.configure import load_class
from openidrp.configure import RPConfiguration
from openidrp.context import RequestContext
from openidrp.defaults import APPLICATION_STORE_KEY
from openidrp.defaults import DEFAULT_RP_CONFIG
from openidrp.exception import ArgumentInvalid
from openidrp.exception import ContextUnavailable
from openidrp.identifier import Identifier
from openidrp.message import MessageEncoder
from openidrp.protocol import is_reserved_argument
from openidrp.protocol import Protocol
from openidrp.realm import Realm
from openidrp.rp.response import AuthenticationResponse
from openidrp.rp.response import FailedAuthenticationResponse
from openidrp.rp.response import parse_response
from openidrp.store import RelyingPartyApplicationStore
from openidrp.util import replace_query

logger = logging.getLogger(__name__)


class RelyingParty(object):
    """
    Lets a web site act as an OpenID relying party for one HTTP request.

    Typical use in a login handler::

        rp = RelyingParty.from_context(RequestContext.from_environ(environ, app_state))
        if rp.response is None:
            return rp.create_request(user_input).redirect_to_provider()
        if rp.response.status == AuthenticationStatus.AUTHENTICATED:
            login(rp.response.claimed_identifier)

    :param store: Where associations and nonces are kept. Must be shared by
        all servers in a multi server deployment. If None the relying party
        runs in stateless mode.
    :param request_url: The URL of the current request, which may carry an
        authentication response. If not given no response will be processed.
    :param query: The name/value pairs of the query string of a GET request
        or the form of a POST request. Must be given if request_url is.
    :param context: The current request, used when return_to and realm have
        to be computed.
    :param config: RPConfiguration instance or dictionary
    :param httpc: HTTP client used for direct communication with providers
    :param httpc_params: Extra arguments to the HTTP client
    :param discovery: Callable that maps an identifier to service endpoints
    """

    def __init__(self,
                 store: Optional[RelyingPartyApplicationStore] = None,
                 request_url: Optional[str] = None,
                 query: Optional[Mapping[str, str]] = None,
                 context: Optional[RequestContext] = None,
                 config: Optional[Union[dict, RPConfiguration]] = None,
                 httpc: Optional[Callable] = None,
                 httpc_params: Optional[dict] = None,
                 discovery: Optional[Callable] = None):
        self.store = store
        if store is not None:
            store.purge_expired()

        if request_url is not None:
            if query is None:
                raise ArgumentInvalid("query is required when request_url is given")
            self.request_url = request_url
            self.query = dict(query)
        else:
            self.request_url = None
            self.query = None

        if context is None and request_url is not None:
            context = RequestContext(request_url, query=self.query)
        self.context = context

        self.encoder = MessageEncoder()

        if config is None:
            config = DEFAULT_RP_CONFIG

        self.token_key = config.get("token_key") or DEFAULT_RP_CONFIG["token_key"]
        self.request_builder = load_class(
            config.get("request_builder") or DEFAULT_RP_CONFIG["request_builder"])
        self.response_parser = load_class(
            config.get("response_parser") or DEFAULT_RP_CONFIG["response_parser"])
        self.discovery = discovery or build_component(
            config.get("discovery") or DEFAULT_RP_CONFIG["discovery"])
        self.httpc = httpc or requests.request
        self.httpc_params = httpc_params or config.get("httpc_params") or {}

        self._response = None
        self._response_computed = False
        self._response_lock = threading.Lock()

        logger.debug(f"RelyingParty created, stateless: {self.stateless}, "
                     f"response ready: {self.is_response_ready}")

    @classmethod
    def from_context(cls,
                     context: RequestContext,
                     store: Optional[RelyingPartyApplicationStore] = None,
                     stateless: Optional[bool] = False,
                     **kwargs) -> "RelyingParty":
        """
        Create a relying party for the request described by context. Unless a
        store is given, or stateless is asked for, the store kept in the
        application state is used.
        """
        if store is None and not stateless:
            _config = kwargs.get("config") or DEFAULT_RP_CONFIG
            store = cls.application_store(context.application, _config.get("store"))
        return cls(store, context.url, context.query, context=context, **kwargs)

    @property
    def stateless(self) -> bool:
        return self.store is None

    @staticmethod
    def application_store(application: Optional[ApplicationState],
                          store_conf: Optional[dict] = None) -> RelyingPartyApplicationStore:
        """
        The store shared by every relying party in this process. Created the
        first time it is asked for.

        :param application: Process wide application state
        :param store_conf: How to build the store if there is none yet
        """
        if application is None:
            raise ContextUnavailable(
                "A store must be given when there is no application state available")

        _conf = store_conf or DEFAULT_RP_CONFIG["store"]
        return application.get_or_create(APPLICATION_STORE_KEY, lambda: build_component(_conf))

    def _request_context(self) -> RequestContext:
        if self.context is None:
            raise ContextUnavailable(
                "There is no current request, return_to and realm must be given")
        return self.context

    def create_request(self,
                       identifier: Union[str, Identifier],
                       realm: Optional[Union[str, Realm]] = None,
                       return_to: Optional[str] = None):
        """
        Create a request to verify that the user controls identifier.

        :param identifier: The identifier the user supplied
        :param realm: The realm of this site. Computed from the current request
            if not given.
        :param return_to: Where the provider should send the user back to.
            Computed from the current request if not given.
        :return: An authentication request instance from the request builder
        """
        if realm is None:
            realm = self.default_realm()
        else:
            realm = Realm(realm)

        if return_to is None:
            return_to = self.return_to_url(realm)

        return self.request_builder.create(identifier, realm, return_to, self.store, self.encoder,
                                           discovery=self.discovery)

    def should_strip_from_return_to(self, name: str) -> bool:
        """
        Arguments left over from an earlier login attempt are not carried
        over into a new return_to.
        """
        return is_reserved_argument(name) or name == self.token_key

    def return_to_url(self, realm: Union[str, Realm]) -> str:
        """
        Compute return_to from the current request.

        :param realm: The realm the request will be made under
        :return: A URL
        """
        _ctx = self._request_context()
        _realm = Realm(realm)

        _path = urlsplit(_ctx.url).path
        _realm_path = _realm.absolute_path
        # Match the case used in the realm, if the web server does not care
        if _path.lower().startswith(_realm_path.lower()) and not _path.startswith(_realm_path):
            _path = _realm_path + _path[len(_realm_path):]

        _args = [(k, v) for k, v in _ctx.query_string_args
                 if not self.should_strip_from_return_to(k)]
        _return_to = replace_query(_ctx.url, _args, path=_path)
        logger.debug(f"return_to: {_return_to}")
        return _return_to

    def default_realm(self) -> Realm:
        """
        Realm covering the whole web application. Ends with '/' since realm
        discovery must not involve a redirect.
        """
        _ctx = self._request_context()
        _part = urlsplit(_ctx.url)
        _path = _ctx.application_path or "/"
        if not _path.endswith("/"):
            _path += "/"
        return Realm(urlunsplit((_part.scheme, _part.netloc, _path, "", "")))

    @property
    def is_response_ready(self) -> bool:
        if self.query is None:
            return False
        return Protocol.detect(self.query).mode in self.query

    def get_response(self) -> Optional[AuthenticationResponse]:
        """
        The result of the user's visit to the provider, None if this request
        carries no response. Only computed once.
        """
        with self._response_lock:
            if not self._response_computed:
                self._response = self._parse_response()
                self._response_computed = True
        return self._response

    @property
    def response(self) -> Optional[AuthenticationResponse]:
        return self.get_response()

    def _parse_response(self) -> Optional[AuthenticationResponse]:
        if not self.is_response_ready:
            return None

        outcome = parse_response(self.response_parser.parse, self.query, self.store,
                                 self.request_url, httpc=self.httpc,
                                 httpc_params=self.httpc_params, encoder=self.encoder)
        if outcome.error is not None:
            logger.error(f"Authentication response rejected: {outcome.error}")
            return FailedAuthenticationResponse(outcome.error, self.query)
        return outcome.response
