""" Messages exchanged between a relying party and an OpenID provider."""
import logging
from typing import Optional

from cryptojwt import as_unicode
from idpyoidc.message import Message
from idpyoidc.message import SINGLE_OPTIONAL_STRING
from idpyoidc.message import SINGLE_REQUIRED_STRING

from openidrp.exception import ProtocolError

logger = logging.getLogger(__name__)

# Indirect messages longer than this should not be sent in a URL
MAX_INDIRECT_MESSAGE_URL_LENGTH = 2048


class CheckIdRequest(Message):
    """checkid_setup and checkid_immediate requests"""
    c_param = {
        "openid.ns": SINGLE_OPTIONAL_STRING,
        "openid.mode": SINGLE_REQUIRED_STRING,
        "openid.claimed_id": SINGLE_OPTIONAL_STRING,
        "openid.identity": SINGLE_REQUIRED_STRING,
        "openid.assoc_handle": SINGLE_OPTIONAL_STRING,
        "openid.return_to": SINGLE_OPTIONAL_STRING,
        "openid.realm": SINGLE_OPTIONAL_STRING,
        "openid.trust_root": SINGLE_OPTIONAL_STRING,
    }


class PositiveAssertion(Message):
    """An id_res response"""
    c_param = {
        "openid.ns": SINGLE_OPTIONAL_STRING,
        "openid.mode": SINGLE_REQUIRED_STRING,
        "openid.op_endpoint": SINGLE_OPTIONAL_STRING,
        "openid.claimed_id": SINGLE_OPTIONAL_STRING,
        "openid.identity": SINGLE_REQUIRED_STRING,
        "openid.return_to": SINGLE_REQUIRED_STRING,
        "openid.response_nonce": SINGLE_OPTIONAL_STRING,
        "openid.invalidate_handle": SINGLE_OPTIONAL_STRING,
        "openid.assoc_handle": SINGLE_REQUIRED_STRING,
        "openid.signed": SINGLE_REQUIRED_STRING,
        "openid.sig": SINGLE_REQUIRED_STRING,
    }


class CheckAuthenticationResponse(Message):
    c_param = {
        "ns": SINGLE_OPTIONAL_STRING,
        "is_valid": SINGLE_REQUIRED_STRING,
        "invalidate_handle": SINGLE_OPTIONAL_STRING,
    }


def to_key_value(message: dict) -> str:
    """
    Key-Value form encoding used for direct communication.

    :param message: The items to encode
    :return: newline separated 'key:value' lines
    """
    lines = []
    for key, value in message.items():
        if ":" in key or "\n" in key or "\n" in value:
            raise ValueError(f"Can not KV encode {key}")
        lines.append(f"{key}:{value}\n")
    return "".join(lines)


def from_key_value(text: str) -> dict:
    """
    Parse a Key-Value form body.

    :param text: The body of a direct response
    :return: A dictionary
    """
    _res = {}
    for line in as_unicode(text).splitlines():
        if not line.strip():
            continue
        try:
            key, value = line.split(":", 1)
        except ValueError:
            raise ProtocolError(f"Malformed key-value line: {line}")
        _res[key.strip()] = value.strip()
    return _res


class MessageEncoder(object):
    """
    Turns outgoing messages into something that can be handed to the user agent
    or sent directly to a provider.
    """

    def __init__(self, max_url_length: Optional[int] = MAX_INDIRECT_MESSAGE_URL_LENGTH):
        self.max_url_length = max_url_length

    def indirect_url(self, message: Message, endpoint: str) -> str:
        return message.request(endpoint)

    def encode_indirect(self, message: Message, endpoint: str) -> dict:
        """
        Encode a message that should reach the provider through the user agent.

        :return: dictionary with status_code, headers and either a location or a
            form body for a POST
        """
        _url = self.indirect_url(message, endpoint)
        if len(_url) <= self.max_url_length:
            logger.debug(f"Redirecting user agent to {_url}")
            return {"status_code": 302, "headers": {"Location": _url}, "url": _url}

        logger.debug(f"Message too long for a redirect, using POST to {endpoint}")
        return {
            "status_code": 200,
            "method": "POST",
            "url": endpoint,
            "body": message.to_urlencoded(),
            "headers": {"Content-Type": "application/x-www-form-urlencoded"}
        }

    def encode_direct(self, message: Message) -> dict:
        return {
            "body": message.to_urlencoded(),
            "headers": {"Content-Type": "application/x-www-form-urlencoded"}
        }

    def decode_direct(self, body: str) -> CheckAuthenticationResponse:
        return CheckAuthenticationResponse(**from_key_value(body))
