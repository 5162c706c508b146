import calendar
import logging
import threading
import time
from typing import Optional

from cryptojwt.jwt import utc_time_sans_frac
from idpyoidc.impexp import ImpExp

logger = logging.getLogger(__name__)

# Maximum age of a response nonce, and of the clock skew we accept.
DEFAULT_MAX_NONCE_AGE = 5 * 60 * 60

NONCE_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def nonce_timestamp(nonce: str) -> Optional[int]:
    """
    Return the time stamp embedded at the start of an OpenID 2.0 response nonce
    or None if the nonce is malformed.
    """
    try:
        _ts = time.strptime(nonce[:20], NONCE_TIME_FORMAT)
    except (TypeError, ValueError):
        return None
    return calendar.timegm(_ts)


class Association(ImpExp):
    """A shared secret negotiated with a provider."""

    parameter = {
        "handle": "",
        "secret": "",
        "assoc_type": "",
        "issued": 0,
        "lifetime": 0
    }

    def __init__(self, handle: str = "", secret: str = "", assoc_type: str = "HMAC-SHA256",
                 issued: int = 0, lifetime: int = 0):
        ImpExp.__init__(self)
        self.handle = handle
        self.secret = secret
        self.assoc_type = assoc_type
        self.issued = issued or utc_time_sans_frac()
        self.lifetime = lifetime

    @property
    def expires(self) -> int:
        return self.issued + self.lifetime

    def is_expired(self, now: Optional[int] = None) -> bool:
        if now is None:
            now = utc_time_sans_frac()
        return self.expires <= now

    def __eq__(self, other):
        if not isinstance(other, Association):
            return NotImplemented
        return self.dump() == other.dump()


def load_association(info: dict) -> Association:
    _assoc = Association()
    _assoc.load(info)
    return _assoc


class RelyingPartyApplicationStore(object):
    """
    Where a relying party keeps associations with providers and the nonces it
    has seen. In a multi server deployment one store must be shared by all
    servers, otherwise a replayed assertion directed at another server will
    not be detected.
    """

    def store_association(self, provider: str, association: Association):
        raise NotImplementedError()

    def get_association(self, provider: str, handle: Optional[str] = None) -> Optional[Association]:
        raise NotImplementedError()

    def remove_association(self, provider: str, handle: str) -> bool:
        raise NotImplementedError()

    def use_nonce(self, provider: str, nonce: str) -> bool:
        """
        Record a nonce. Returns False if the nonce has been used before or is
        too old to be checked.
        """
        raise NotImplementedError()

    def purge_expired(self):
        raise NotImplementedError()


class ApplicationMemoryStore(RelyingPartyApplicationStore, ImpExp):
    """
    Store that lives in the memory of one process. Good enough for a single
    server deployment.
    """

    parameter = {
        "associations": {},
        "nonces": {},
        "max_nonce_age": 0
    }

    def __init__(self, max_nonce_age: Optional[int] = DEFAULT_MAX_NONCE_AGE):
        ImpExp.__init__(self)
        # provider -> handle -> dumped Association
        self.associations = {}
        # provider -> nonce -> timestamp
        self.nonces = {}
        self.max_nonce_age = max_nonce_age
        self._lock = threading.RLock()

    def store_association(self, provider: str, association: Association):
        with self._lock:
            self.associations.setdefault(provider, {})[association.handle] = association.dump()

    def get_association(self, provider: str, handle: Optional[str] = None) -> Optional[Association]:
        """
        Get a specific association or, without a handle, the live association
        with the latest issue time.
        """
        with self._lock:
            _assocs = self.associations.get(provider, {})
            if handle:
                _info = _assocs.get(handle)
                if _info is None:
                    return None
                _candidates = [load_association(_info)]
            else:
                _candidates = [load_association(v) for v in _assocs.values()]

        _now = utc_time_sans_frac()
        _live = [a for a in _candidates if not a.is_expired(_now)]
        if not _live:
            return None
        return max(_live, key=lambda a: a.issued)

    def remove_association(self, provider: str, handle: str) -> bool:
        with self._lock:
            try:
                del self.associations[provider][handle]
            except KeyError:
                return False
            if not self.associations[provider]:
                del self.associations[provider]
            return True

    def use_nonce(self, provider: str, nonce: str) -> bool:
        _ts = nonce_timestamp(nonce)
        if _ts is None:
            logger.debug(f"Malformed nonce: {nonce}")
            return False

        _now = utc_time_sans_frac()
        if abs(_now - _ts) > self.max_nonce_age:
            logger.debug(f"Nonce outside allowed window: {nonce}")
            return False

        with self._lock:
            _seen = self.nonces.setdefault(provider, {})
            if nonce in _seen:
                return False
            _seen[nonce] = _ts
            return True

    def purge_expired(self):
        _now = utc_time_sans_frac()
        _removed = 0
        with self._lock:
            for provider in list(self.associations.keys()):
                _assocs = self.associations[provider]
                for handle in list(_assocs.keys()):
                    if load_association(_assocs[handle]).is_expired(_now):
                        del _assocs[handle]
                        _removed += 1
                if not _assocs:
                    del self.associations[provider]

            for provider in list(self.nonces.keys()):
                _seen = self.nonces[provider]
                for nonce, _ts in list(_seen.items()):
                    if _now - _ts > self.max_nonce_age:
                        del _seen[nonce]
                        _removed += 1
                if not _seen:
                    del self.nonces[provider]

        if _removed:
            logger.debug(f"Purged {_removed} expired items from the store")

    def __len__(self):
        with self._lock:
            return sum(len(v) for v in self.associations.values()) + sum(
                len(v) for v in self.nonces.values())
