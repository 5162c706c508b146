import time
from typing import Optional

from idpyoidc.util import rndstr

from openidrp.protocol import OPENID2_NS
from openidrp.store import NONCE_TIME_FORMAT

OP_ENDPOINT = "https://op.example.org/openid"
CLAIMED_ID = "https://alice.example.org/"

V2_SIGNED = "op_endpoint,claimed_id,identity,return_to,response_nonce,assoc_handle"


def make_nonce(when: Optional[float] = None) -> str:
    if when is None:
        when = time.time()
    return time.strftime(NONCE_TIME_FORMAT, time.gmtime(when)) + rndstr(6)


def positive_assertion(return_to: str, op_endpoint: Optional[str] = OP_ENDPOINT,
                       claimed_id: Optional[str] = CLAIMED_ID, nonce: Optional[str] = None,
                       **extra) -> dict:
    query = {
        "openid.ns": OPENID2_NS,
        "openid.mode": "id_res",
        "openid.op_endpoint": op_endpoint,
        "openid.claimed_id": claimed_id,
        "openid.identity": claimed_id,
        "openid.return_to": return_to,
        "openid.response_nonce": nonce or make_nonce(),
        "openid.assoc_handle": "{HMAC-SHA256}{1234}",
        "openid.signed": V2_SIGNED,
        "openid.sig": "c2lnbmF0dXJl",
    }
    query.update(extra)
    return query


class CountingParser(object):
    """Response parser stand-in that remembers how it was called."""

    def __init__(self, response=None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls = []

    def parse(self, query, store, request_url, **kwargs):
        self.calls.append({"query": query, "store": store, "request_url": request_url})
        if self.error is not None:
            raise self.error
        return self.response


class CountingStore(object):

    def __init__(self):
        self.purged = 0

    def purge_expired(self):
        self.purged += 1

    def get_association(self, provider, handle=None):
        return None
