import logging
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from openidrp.identifier import Identifier
from openidrp.protocol import OPENID2_IDENTIFIER_SELECT
from openidrp.protocol import Protocol

logger = logging.getLogger(__name__)


class ServiceEndpoint(object):
    """A provider endpoint that can vouch for an identifier."""

    def __init__(self,
                 provider_endpoint: str,
                 claimed_identifier: Optional[Union[str, Identifier]] = None,
                 provider_local_identifier: Optional[str] = "",
                 version: Optional[str] = "2.0",
                 priority: Optional[int] = 10):
        self.provider_endpoint = provider_endpoint
        self.protocol = Protocol.for_version(version)
        if claimed_identifier:
            self.claimed_identifier = Identifier.parse(claimed_identifier)
        else:
            self.claimed_identifier = None
        self.provider_local_identifier = provider_local_identifier or (
            str(self.claimed_identifier) if self.claimed_identifier else "")
        self.priority = priority

    @property
    def is_op_identifier(self) -> bool:
        """
        True when discovery was done on a provider identifier and the provider
        will pick the identifier.
        """
        return self.claimed_identifier is None

    def request_identity(self) -> str:
        if self.is_op_identifier:
            return OPENID2_IDENTIFIER_SELECT
        return self.provider_local_identifier

    def request_claimed_id(self) -> str:
        if self.is_op_identifier:
            return OPENID2_IDENTIFIER_SELECT
        return str(self.claimed_identifier)

    def __repr__(self):
        return f"ServiceEndpoint({self.provider_endpoint!r}, {self.claimed_identifier!r})"


class StaticDiscovery(object):
    """
    Discovery from a configured table. The table maps normalized identifiers
    to one or more endpoint descriptions with the same keys as the
    ServiceEndpoint constructor.
    """

    def __init__(self, endpoints: Optional[Dict[str, Union[dict, List[dict]]]] = None, **kwargs):
        self.endpoints = {}
        for identifier, spec in (endpoints or {}).items():
            if isinstance(spec, dict):
                spec = [spec]
            self.add(identifier, *spec)

    def add(self, identifier: Union[str, Identifier], *specs: dict):
        _id = Identifier.parse(identifier)
        _eps = self.endpoints.setdefault(_id, [])
        for spec in specs:
            _spec = spec.copy()
            if "claimed_identifier" not in _spec:
                _spec["claimed_identifier"] = _id
            _eps.append(ServiceEndpoint(**_spec))

    def __call__(self, identifier: Identifier) -> List[ServiceEndpoint]:
        _eps = self.endpoints.get(Identifier.parse(identifier), [])
        logger.debug(f"Discovered {len(_eps)} endpoint(s) for {identifier}")
        return sorted(_eps, key=lambda e: e.priority)
