import logging
from typing import Callable
from typing import List
from typing import Optional
from typing import Union

from openidrp.discovery import ServiceEndpoint
from openidrp.exception import DiscoveryFailed
from openidrp.exception import ReturnToNotUnderRealm
from openidrp.identifier import Identifier
from openidrp.message import CheckIdRequest
from openidrp.message import MessageEncoder
from openidrp.realm import Realm
from openidrp.rp.response import RETURN_TO_CLAIMED_ID
from openidrp.rp.response import RETURN_TO_OP_ENDPOINT
from openidrp.rp.response import RETURN_TO_PREFIX
from openidrp.store import RelyingPartyApplicationStore
from openidrp.util import append_query_args
from openidrp.util import drop_query_args

logger = logging.getLogger(__name__)

SETUP = "setup"
IMMEDIATE = "immediate"


class AuthenticationRequest(object):
    """
    A request to a provider to verify that the user controls an identifier.
    """

    def __init__(self,
                 endpoint: ServiceEndpoint,
                 realm: Realm,
                 return_to: str,
                 store: Optional[RelyingPartyApplicationStore] = None,
                 encoder: Optional[MessageEncoder] = None):
        self.endpoint = endpoint
        self.realm = realm
        self.return_to = return_to
        self.store = store
        self.encoder = encoder or MessageEncoder()
        self.mode = SETUP
        self.extension_args = {}
        self.assoc_handle = None

        if store is not None:
            _assoc = store.get_association(endpoint.provider_endpoint)
            if _assoc:
                self.assoc_handle = _assoc.handle

        if not endpoint.protocol.ns_in_messages:
            # 1.x assertions do not say who made them
            _args = [(RETURN_TO_OP_ENDPOINT, endpoint.provider_endpoint)]
            if not endpoint.is_op_identifier:
                _args.append((RETURN_TO_CLAIMED_ID, str(endpoint.claimed_identifier)))
            self.return_to = append_query_args(
                drop_query_args(return_to, lambda k: k.startswith(RETURN_TO_PREFIX)), _args)

    @classmethod
    def create(cls,
               identifier: Union[str, Identifier],
               realm: Realm,
               return_to: str,
               store: Optional[RelyingPartyApplicationStore] = None,
               encoder: Optional[MessageEncoder] = None,
               discovery: Optional[Callable[[Identifier], List[ServiceEndpoint]]] = None,
               **kwargs) -> "AuthenticationRequest":
        """
        Construct a request after discovering which provider to send the
        user to.

        :param identifier: The identifier the user entered
        :param realm: The realm of this relying party
        :param return_to: Where the provider should send the user afterwards
        :param store: Store with associations, None in stateless mode
        :param encoder: Message encoder
        :param discovery: Callable mapping an identifier to service endpoints
        :return: An AuthenticationRequest instance
        """
        _id = Identifier.parse(identifier)
        _realm = Realm(realm)

        if not _realm.contains(return_to):
            raise ReturnToNotUnderRealm(f"return_to {return_to} is not under realm {_realm}")

        if discovery is None:
            raise DiscoveryFailed(f"No discovery available for {_id}")

        _endpoints = discovery(_id)
        if not _endpoints:
            raise DiscoveryFailed(f"No OpenID endpoint found for {_id}")

        _endpoint = sorted(_endpoints, key=lambda e: e.priority)[0]
        logger.debug(f"Using {_endpoint} for {_id}")
        return cls(_endpoint, _realm, return_to, store=store, encoder=encoder)

    @property
    def protocol(self):
        return self.endpoint.protocol

    @property
    def provider(self) -> str:
        return self.endpoint.provider_endpoint

    @property
    def claimed_identifier(self) -> Optional[Identifier]:
        return self.endpoint.claimed_identifier

    def add_extension_arguments(self, namespace: str, alias: str, args: dict):
        """
        Add extension arguments to the request.

        :param namespace: The type URI of the extension
        :param alias: The alias used for the extension in this message
        :param args: The arguments without the openid.<alias>. prefix
        """
        _prot = self.protocol
        if _prot.ns_in_messages:
            self.extension_args[_prot.arg(f"ns.{alias}")] = namespace
        for key, val in args.items():
            self.extension_args[_prot.arg(f"{alias}.{key}")] = val

    @property
    def redirecting_message(self) -> CheckIdRequest:
        _prot = self.protocol
        _args = {
            _prot.mode: f"checkid_{self.mode}",
            _prot.arg("identity"): self.endpoint.request_identity(),
            _prot.arg("return_to"): self.return_to,
            _prot.realm_arg: self.realm.url,
        }
        if _prot.ns_in_messages:
            _args[_prot.ns] = _prot.namespace
            _args[_prot.claimed_id_arg] = self.endpoint.request_claimed_id()
        if self.assoc_handle:
            _args[_prot.arg("assoc_handle")] = self.assoc_handle

        _args.update(self.extension_args)
        return CheckIdRequest(**_args)

    @property
    def redirect_url(self) -> str:
        return self.encoder.indirect_url(self.redirecting_message, self.provider)

    def redirect_to_provider(self) -> dict:
        """
        The HTTP response to send to the user agent.
        """
        return self.encoder.encode_indirect(self.redirecting_message, self.provider)
