import logging
from typing import Mapping

logger = logging.getLogger(__name__)

OPENID_PREFIX = "openid."

OPENID1_NS = "http://openid.net/signon/1.1"
OPENID10_NS = "http://openid.net/signon/1.0"
OPENID2_NS = "http://specs.openid.net/auth/2.0"
OPENID2_IDENTIFIER_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"


class Protocol(object):
    """
    The parts of an OpenID protocol version a relying party needs to know about
    when constructing requests and reading responses.
    """

    def __init__(self, version: str, namespace: str,
                 realm_arg: str, claimed_id_arg: str = "", setup_needed_mode: str = "",
                 ns_in_messages: bool = False):
        self.version = version
        self.namespace = namespace
        self.realm_arg = realm_arg
        self.claimed_id_arg = claimed_id_arg
        self.setup_needed_mode = setup_needed_mode
        self.ns_in_messages = ns_in_messages
        self.prefix = OPENID_PREFIX

    def arg(self, name: str) -> str:
        return f"{self.prefix}{name}"

    @property
    def mode(self) -> str:
        return self.arg("mode")

    @property
    def ns(self) -> str:
        return self.arg("ns")

    def __repr__(self):
        return f"Protocol({self.version})"

    @staticmethod
    def detect(query: Mapping[str, str]) -> "Protocol":
        """
        Pick the protocol version from the parameters of a message.
        OpenID 2.0 messages always carry the 2.0 namespace, anything else is
        treated as 1.x.
        """
        if query.get(V20.ns) == V20.namespace:
            return V20
        return V11

    @staticmethod
    def for_version(version: str) -> "Protocol":
        try:
            return PROTOCOLS[version]
        except KeyError:
            raise ValueError(f"Unknown protocol version: {version}")


V10 = Protocol("1.0", OPENID10_NS, realm_arg="openid.trust_root")
V11 = Protocol("1.1", OPENID1_NS, realm_arg="openid.trust_root")
V20 = Protocol("2.0", OPENID2_NS, realm_arg="openid.realm", claimed_id_arg="openid.claimed_id",
               setup_needed_mode="setup_needed", ns_in_messages=True)

PROTOCOLS = {p.version: p for p in [V10, V11, V20]}

DEFAULT = V20


def is_reserved_argument(name: str) -> bool:
    """
    True if a query argument belongs to the OpenID namespace. Comparison is
    case-insensitive since some web frameworks fold the case of parameter names.
    """
    return name.lower().startswith(DEFAULT.prefix)
