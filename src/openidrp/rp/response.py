import enum
import logging
from collections import namedtuple
from typing import Callable
from typing import Mapping
from typing import Optional
from urllib.parse import parse_qsl
from urllib.parse import urlsplit

import requests
from idpyoidc.exception import MissingRequiredAttribute

from openidrp.exception import InvalidIdentifier
from openidrp.exception import OpenIdError
from openidrp.exception import ProtocolError
from openidrp.exception import ReplayedNonce
from openidrp.exception import ReturnToMismatch
from openidrp.exception import VerificationFailed
from openidrp.identifier import Identifier
from openidrp.message import MessageEncoder
from openidrp.message import PositiveAssertion
from openidrp.protocol import Protocol
from openidrp.protocol import V20
from openidrp.store import RelyingPartyApplicationStore

logger = logging.getLogger(__name__)

# Arguments the relying party adds to return_to for 1.x providers, which do
# not tell which endpoint they are and what identifier was claimed.
RETURN_TO_PREFIX = "openidrp."
RETURN_TO_OP_ENDPOINT = f"{RETURN_TO_PREFIX}op_endpoint"
RETURN_TO_CLAIMED_ID = f"{RETURN_TO_PREFIX}claimed_id"

V1_SIGNED_FIELDS = ["return_to", "identity"]
V2_SIGNED_FIELDS = ["op_endpoint", "return_to", "response_nonce", "assoc_handle"]

ParseOutcome = namedtuple("ParseOutcome", ["response", "error"])


class AuthenticationStatus(enum.Enum):
    AUTHENTICATED = "authenticated"
    CANCELED = "canceled"
    FAILED = "failed"
    SETUP_REQUIRED = "setup_required"


class AuthenticationResponse(object):
    """The outcome of a user agent's visit to a provider."""
    status = None

    def __init__(self, query: Optional[Mapping[str, str]] = None,
                 claimed_identifier: Optional[Identifier] = None):
        self.query = dict(query or {})
        self.claimed_identifier = claimed_identifier
        self.exception = None

    def __repr__(self):
        return f"{self.__class__.__name__}(status={self.status}, claimed_identifier={self.claimed_identifier})"

    @classmethod
    def parse(cls,
              query: Mapping[str, str],
              store: Optional[RelyingPartyApplicationStore],
              request_url: str,
              httpc: Optional[Callable] = None,
              httpc_params: Optional[dict] = None,
              encoder: Optional[MessageEncoder] = None,
              **kwargs) -> "AuthenticationResponse":
        """
        Parse the response a provider sent by way of the user agent.
        Raises ProtocolError if the response is not acceptable.

        :param query: The inbound query or form parameters
        :param store: Association and nonce store, None in stateless mode
        :param request_url: The URL of the current request
        :param httpc: HTTP client used for direct verification
        :param httpc_params: Extra arguments to the HTTP client
        :param encoder: Message encoder
        """
        _protocol = Protocol.detect(query)
        _mode = query.get(_protocol.mode)
        logger.debug(f"Parsing {_protocol} response with mode {_mode}")

        if _mode == "cancel":
            return CanceledAuthenticationResponse(query)
        elif _mode == "error":
            raise ProtocolError(query.get(_protocol.arg("error"), "Provider returned an error"))
        elif _mode == "setup_needed" and _protocol.setup_needed_mode:
            return SetupRequiredAuthenticationResponse(query)
        elif _mode == "id_res":
            _setup_url = query.get(_protocol.arg("user_setup_url"))
            if _setup_url and _protocol is not V20:
                return SetupRequiredAuthenticationResponse(query, user_setup_url=_setup_url)

            verifier = ResponseVerifier(store, request_url, httpc=httpc,
                                        httpc_params=httpc_params, encoder=encoder)
            return verifier(query, _protocol)
        else:
            raise ProtocolError(f"Unsupported mode in response: {_mode}")


class AuthenticatedResponse(AuthenticationResponse):
    status = AuthenticationStatus.AUTHENTICATED

    def __init__(self, query: Mapping[str, str], claimed_identifier: Identifier,
                 provider_endpoint: str):
        AuthenticationResponse.__init__(self, query, claimed_identifier)
        self.provider_endpoint = provider_endpoint

    @property
    def signed_fields(self):
        return [f"openid.{f}" for f in self.query.get("openid.signed", "").split(",") if f]

    def get_extension_arguments(self, namespace: str, signed_only: Optional[bool] = True) -> dict:
        """
        The arguments of an extension in the assertion with the
        openid.<alias>. prefix removed.

        :param namespace: The type URI of the extension
        :param signed_only: Only return arguments covered by the signature
        """
        _alias = None
        for key, val in self.query.items():
            if key.startswith("openid.ns.") and val == namespace:
                _alias = key[len("openid.ns."):]
                break
        if _alias is None:
            return {}

        _prefix = f"openid.{_alias}."
        _signed = self.signed_fields
        return {
            key[len(_prefix):]: val for key, val in self.query.items()
            if key.startswith(_prefix) and (not signed_only or key in _signed)
        }


class CanceledAuthenticationResponse(AuthenticationResponse):
    status = AuthenticationStatus.CANCELED


class SetupRequiredAuthenticationResponse(AuthenticationResponse):
    status = AuthenticationStatus.SETUP_REQUIRED

    def __init__(self, query: Mapping[str, str], user_setup_url: Optional[str] = None):
        AuthenticationResponse.__init__(self, query)
        self.user_setup_url = user_setup_url


class FailedAuthenticationResponse(AuthenticationResponse):
    status = AuthenticationStatus.FAILED

    def __init__(self, exception: Exception, query: Optional[Mapping[str, str]] = None):
        AuthenticationResponse.__init__(self, query)
        self.exception = exception
        self.message = str(exception)


def parse_response(parser: Callable,
                   query: Mapping[str, str],
                   store: Optional[RelyingPartyApplicationStore],
                   request_url: str,
                   **kwargs) -> ParseOutcome:
    """
    Run a response parser and report an OpenID failure as part of the outcome
    instead of as an exception.
    """
    try:
        return ParseOutcome(parser(query, store, request_url, **kwargs), None)
    except OpenIdError as err:
        return ParseOutcome(None, err)


class ResponseVerifier(object):
    """Verifies a positive assertion."""

    def __init__(self,
                 store: Optional[RelyingPartyApplicationStore],
                 request_url: str,
                 httpc: Optional[Callable] = None,
                 httpc_params: Optional[dict] = None,
                 encoder: Optional[MessageEncoder] = None):
        self.store = store
        self.request_url = request_url
        self.httpc = httpc or requests.request
        self.httpc_params = httpc_params or {}
        self.encoder = encoder or MessageEncoder()

    def __call__(self, query: Mapping[str, str], protocol: Protocol) -> AuthenticatedResponse:
        _msg = PositiveAssertion(**query)
        try:
            _msg.verify()
        except MissingRequiredAttribute as err:
            raise ProtocolError(f"Incomplete assertion: {err}")

        _return_to = _msg["openid.return_to"]
        self.check_return_to(_return_to)
        self.check_signed_fields(query, protocol)

        _return_to_args = dict(parse_qsl(urlsplit(_return_to).query, keep_blank_values=True))
        if protocol is V20:
            _op_endpoint = query.get("openid.op_endpoint")
            if not _op_endpoint:
                raise ProtocolError("No op_endpoint in assertion")
            _claimed_id = query.get("openid.claimed_id")
            if not _claimed_id:
                raise ProtocolError("Assertion is not about an identifier")
        else:
            _op_endpoint = _return_to_args.get(RETURN_TO_OP_ENDPOINT)
            if not _op_endpoint:
                raise ProtocolError("Do not know which provider sent the assertion")
            _claimed_id = _return_to_args.get(RETURN_TO_CLAIMED_ID) or query["openid.identity"]

        try:
            _identifier = Identifier.parse(_claimed_id)
        except InvalidIdentifier as err:
            raise ProtocolError(f"Assertion about an invalid identifier: {err}") from err

        _invalidate = query.get("openid.invalidate_handle")
        if _invalidate and self.store is not None:
            self.store.remove_association(_op_endpoint, _invalidate)

        self.check_authentication(query, _op_endpoint)

        if protocol is V20 and self.store is not None:
            _nonce = query.get("openid.response_nonce")
            if not _nonce:
                raise ProtocolError("No response nonce in assertion")
            if not self.store.use_nonce(_op_endpoint, _nonce):
                logger.warning(f"Replayed or stale nonce from {_op_endpoint}: {_nonce}")
                raise ReplayedNonce(f"Nonce already used or too old: {_nonce}")

        return AuthenticatedResponse(query, _identifier, _op_endpoint)

    def check_return_to(self, return_to: str):
        """
        The return_to the provider signed must be the URL this response came
        in on and all its arguments must be present with the same values.
        """
        _rt = urlsplit(return_to)
        _req = urlsplit(self.request_url)
        if (_rt.scheme.lower(), _rt.netloc.lower(), _rt.path) != (
                _req.scheme.lower(), _req.netloc.lower(), _req.path):
            raise ReturnToMismatch(f"return_to {return_to} does not match {self.request_url}")

        _req_args = parse_qsl(_req.query, keep_blank_values=True)
        for arg in parse_qsl(_rt.query, keep_blank_values=True):
            if arg not in _req_args:
                raise ReturnToMismatch(f"Argument {arg[0]} in return_to missing from the request")

    @staticmethod
    def check_signed_fields(query: Mapping[str, str], protocol: Protocol):
        _signed = query.get("openid.signed", "").split(",")
        if protocol is V20:
            _required = V2_SIGNED_FIELDS[:]
            if "openid.claimed_id" in query:
                _required.extend(["claimed_id", "identity"])
        else:
            _required = V1_SIGNED_FIELDS

        _missing = [f for f in _required if f not in _signed]
        if _missing:
            raise ProtocolError(f"Fields not covered by the signature: {','.join(_missing)}")

    def check_authentication(self, query: Mapping[str, str], op_endpoint: str):
        """
        Ask the provider to verify the signature on the assertion.
        """
        _args = {k: v for k, v in query.items() if k.startswith("openid.")}
        _args["openid.mode"] = "check_authentication"
        _info = self.encoder.encode_direct(PositiveAssertion(**_args))

        logger.debug(f"check_authentication with {op_endpoint}")
        try:
            resp = self.httpc("POST", op_endpoint, data=_info["body"], headers=_info["headers"],
                              **self.httpc_params)
        except requests.RequestException as err:
            raise VerificationFailed(f"Could not reach {op_endpoint}: {err}")

        if resp.status_code != 200:
            raise VerificationFailed(
                f"check_authentication failed with HTTP status {resp.status_code}")

        _reply = self.encoder.decode_direct(resp.text)
        _handle = _reply.get("invalidate_handle")
        if _handle and self.store is not None:
            self.store.remove_association(op_endpoint, _handle)

        if _reply.get("is_valid") != "true":
            raise VerificationFailed("Provider did not confirm the assertion")
