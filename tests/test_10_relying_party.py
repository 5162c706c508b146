from urllib.parse import parse_qsl
from urllib.parse import urlsplit

import pytest
import requests
import responses

from openidrp.application import ApplicationState
from openidrp.context import RequestContext
from openidrp.discovery import StaticDiscovery
from openidrp.exception import ArgumentInvalid
from openidrp.exception import ContextUnavailable
from openidrp.exception import DiscoveryFailed
from openidrp.exception import ProtocolError
from openidrp.exception import ReturnToMismatch
from openidrp.identifier import Identifier
from openidrp.realm import Realm
from openidrp.rp import RelyingParty
from openidrp.rp.response import AuthenticatedResponse
from openidrp.rp.response import AuthenticationStatus
from openidrp.rp.response import RETURN_TO_CLAIMED_ID
from openidrp.rp.response import RETURN_TO_OP_ENDPOINT
from openidrp.store import ApplicationMemoryStore
from openidrp.util import append_query_args
from tests.utils import CLAIMED_ID
from tests.utils import CountingParser
from tests.utils import CountingStore
from tests.utils import OP_ENDPOINT
from tests.utils import positive_assertion

LOGIN_URL = "https://example.com/app/login"


def authenticated(query):
    return AuthenticatedResponse(query, Identifier.parse(CLAIMED_ID), OP_ENDPOINT)


class TestConstruction(object):

    def test_request_url_without_query(self):
        with pytest.raises(ArgumentInvalid):
            RelyingParty(None, LOGIN_URL, None)

    def test_argument_invalid_is_a_value_error(self):
        with pytest.raises(ValueError):
            RelyingParty(ApplicationMemoryStore(), LOGIN_URL)

    def test_nothing_to_inspect(self):
        rp = RelyingParty()
        assert rp.query is None
        assert rp.request_url is None
        assert rp.is_response_ready is False
        assert rp.response is None

    def test_stateless(self):
        assert RelyingParty().stateless
        assert RelyingParty(ApplicationMemoryStore()).stateless is False

    def test_store_purged(self):
        store = CountingStore()
        RelyingParty(store)
        RelyingParty(store, LOGIN_URL, {})
        assert store.purged == 2

    def test_one_encoder_per_instance(self):
        rp = RelyingParty()
        assert rp.encoder is rp.encoder
        assert RelyingParty().encoder is not rp.encoder

    def test_query_is_a_snapshot(self):
        _query = {"openid.mode": "cancel"}
        rp = RelyingParty(None, LOGIN_URL, _query)
        _query["openid.mode"] = "id_res"
        assert rp.query == {"openid.mode": "cancel"}


class TestResponse(object):

    def test_not_ready(self):
        parser = CountingParser()
        rp = RelyingParty(None, f"{LOGIN_URL}?foo=1", {"foo": "1"},
                          config={"response_parser": parser})
        assert rp.is_response_ready is False
        assert rp.response is None
        assert rp.response is None
        assert rp.get_response() is None
        assert parser.calls == []

    def test_ready_and_cached(self):
        _url = f"{LOGIN_URL}?openid.mode=id_res&foo=1"
        _query = {"openid.mode": "id_res", "foo": "1"}
        parser = CountingParser(authenticated(_query))
        rp = RelyingParty(None, _url, _query, config={"response_parser": parser})

        first = rp.response
        assert first.status == AuthenticationStatus.AUTHENTICATED
        assert rp.response is first
        assert rp.get_response() is first
        assert len(parser.calls) == 1

        # no stripping of inbound parameters
        assert parser.calls[0]["query"] == {"openid.mode": "id_res", "foo": "1"}
        assert parser.calls[0]["store"] is None
        assert parser.calls[0]["request_url"] == _url

    def test_protocol_error_becomes_failed(self):
        _query = {"openid.mode": "id_res"}
        parser = CountingParser(error=ReturnToMismatch("return_to does not match"))
        rp = RelyingParty(None, LOGIN_URL, _query, config={"response_parser": parser})

        _resp = rp.response
        assert _resp.status == AuthenticationStatus.FAILED
        assert _resp.message == "return_to does not match"
        assert isinstance(_resp.exception, ProtocolError)
        assert rp.response is _resp
        assert len(parser.calls) == 1

    def test_other_errors_propagate(self):
        parser = CountingParser(error=KeyError("misconfigured"))
        rp = RelyingParty(None, LOGIN_URL, {"openid.mode": "id_res"},
                          config={"response_parser": parser})
        with pytest.raises(KeyError):
            rp.get_response()

    def test_v2_mode_detected(self):
        parser = CountingParser(authenticated({}))
        rp = RelyingParty(None, LOGIN_URL, {"openid.ns": "http://specs.openid.net/auth/2.0",
                                            "openid.mode": "cancel"},
                          config={"response_parser": parser})
        assert rp.is_response_ready

    def test_store_passed_to_parser(self):
        store = ApplicationMemoryStore()
        parser = CountingParser(authenticated({}))
        rp = RelyingParty(store, LOGIN_URL, {"openid.mode": "id_res"},
                          config={"response_parser": parser})
        rp.get_response()
        assert parser.calls[0]["store"] is store

    def test_default_parser_end_to_end(self):
        _return_to = "https://example.com/app/login?foo=1"
        _query = positive_assertion(_return_to)
        _query["foo"] = "1"
        rp = RelyingParty(None, f"{_return_to}&openid.mode=id_res", _query)

        with responses.RequestsMock() as rsps:
            rsps.add("POST", OP_ENDPOINT, body="is_valid:true\n", status=200)
            assert rp.response.status == AuthenticationStatus.AUTHENTICATED
            assert rp.response.claimed_identifier == CLAIMED_ID
            assert len(rsps.calls) == 1

    def test_default_parser_failure(self):
        _query = positive_assertion("https://example.com/app/other")
        rp = RelyingParty(None, LOGIN_URL, _query)
        assert rp.response.status == AuthenticationStatus.FAILED


class TestReturnTo(object):

    @pytest.mark.parametrize("realm, url, expected_path", [
        ("https://example.com/App/", "https://example.com/app/login.aspx", "/App/login.aspx"),
        ("https://example.com/MyApp/", "https://example.com/myapp/login", "/MyApp/login"),
        ("https://example.com/MyApp/", "https://example.com/MYAPP/a/b", "/MyApp/a/b"),
        ("https://example.com/MyApp/", "https://example.com/MyApp/login", "/MyApp/login"),
        ("https://example.com/", "https://example.com/Login", "/Login"),
        # not a case mismatch, left as it is
        ("https://example.com/MyApp/", "https://example.com/other/login", "/other/login"),
    ])
    def test_path_case(self, realm, url, expected_path):
        rp = RelyingParty(None, url, {})
        assert urlsplit(rp.return_to_url(Realm(realm))).path == expected_path

    def test_stale_arguments_stripped(self):
        _url = "https://example.com/app/login?a=1&openid.mode=id_res&OpenID.ns=x&token=t&b=2&token2=3"
        rp = RelyingParty(None, _url, {})
        _return_to = rp.return_to_url("https://example.com/app/")
        assert parse_qsl(urlsplit(_return_to).query) == [("a", "1"), ("b", "2"), ("token2", "3")]

    def test_realm_and_session_token_scenario(self):
        rp = RelyingParty(None, "https://example.com/app/login.aspx?openid.ext=x&session=1", {},
                          config={"token_key": "session"})
        _return_to = rp.return_to_url(Realm("https://example.com/App/"))
        assert _return_to == "https://example.com/App/login.aspx"

    def test_values_preserved(self):
        rp = RelyingParty(None, "https://example.com/login?q=a+b%26c&empty=", {})
        _return_to = rp.return_to_url("https://example.com/")
        assert parse_qsl(urlsplit(_return_to).query, keep_blank_values=True) == [
            ("q", "a b&c"), ("empty", "")]

    def test_uses_query_string_not_form(self):
        ctx = RequestContext("https://example.com/login?a=1", query={"form_field": "x"})
        rp = RelyingParty(None, ctx.url, ctx.query, context=ctx)
        assert rp.return_to_url("https://example.com/") == "https://example.com/login?a=1"

    def test_no_context(self):
        rp = RelyingParty()
        with pytest.raises(ContextUnavailable):
            rp.return_to_url("https://example.com/")
        with pytest.raises(ContextUnavailable):
            rp.default_realm()
        with pytest.raises(ContextUnavailable):
            rp.create_request("https://alice.example.org/")


class TestRealm(object):

    def test_default_realm(self):
        ctx = RequestContext("https://example.com/App/login?a=1#x", application_path="/App")
        rp = RelyingParty(context=ctx)
        assert rp.default_realm() == Realm("https://example.com/App/")

    def test_default_realm_root(self):
        rp = RelyingParty(None, "http://example.com:8080/login?a=1", {})
        assert rp.default_realm() == Realm("http://example.com:8080/")


class TestCreateRequest(object):
    @pytest.fixture(autouse=True)
    def create_rp(self):
        self.discovery = StaticDiscovery(
            endpoints={"https://alice.example.org/": {"provider_endpoint": OP_ENDPOINT}})
        ctx = RequestContext("https://example.com/myapp/login?token=abc&next=%2Fhome&openid.mode=x",
                             application_path="/MyApp")
        self.rp = RelyingParty(context=ctx, discovery=self.discovery)

    def test_computed_realm_and_return_to(self):
        request = self.rp.create_request("https://alice.example.org/")
        assert request.realm == Realm("https://example.com/MyApp/")
        assert request.return_to == "https://example.com/MyApp/login?next=%2Fhome"
        assert request.provider == OP_ENDPOINT

    def test_explicit_return_to(self):
        request = self.rp.create_request("https://alice.example.org/", "https://example.com/",
                                         "https://example.com/cb")
        assert request.return_to == "https://example.com/cb"
        assert request.encoder is self.rp.encoder

    def test_discovery_failed_propagates(self):
        with pytest.raises(DiscoveryFailed):
            self.rp.create_request("https://bob.example.org/")

    def test_discovery_from_config(self):
        rp = RelyingParty(config={"discovery": {
            "class": "openidrp.discovery.StaticDiscovery",
            "kwargs": {"endpoints": {"https://alice.example.org/": {
                "provider_endpoint": OP_ENDPOINT}}}}})
        request = rp.create_request("https://alice.example.org/", "https://example.com/",
                                    "https://example.com/cb")
        assert request.provider == OP_ENDPOINT


class TestFromContext(object):

    def test_application_store(self):
        app = ApplicationState()
        ctx = RequestContext("https://example.com/login", application=app)
        rp1 = RelyingParty.from_context(ctx)
        rp2 = RelyingParty.from_context(ctx)
        assert rp1.store is not None
        assert rp1.store is rp2.store
        assert rp1.store is RelyingParty.application_store(app)

    def test_stateless(self):
        ctx = RequestContext("https://example.com/login", application=ApplicationState())
        assert RelyingParty.from_context(ctx, stateless=True).stateless

    def test_explicit_store(self):
        store = ApplicationMemoryStore()
        ctx = RequestContext("https://example.com/login")
        assert RelyingParty.from_context(ctx, store=store).store is store

    def test_no_application(self):
        with pytest.raises(ContextUnavailable):
            RelyingParty.from_context(RequestContext("https://example.com/login"))

    def test_response_from_context(self):
        ctx = RequestContext("https://example.com/login?openid.mode=cancel")
        parser = CountingParser(authenticated({}))
        rp = RelyingParty.from_context(ctx, stateless=True, config={"response_parser": parser})
        assert rp.response.status == AuthenticationStatus.AUTHENTICATED
        assert parser.calls[0]["query"] == {"openid.mode": "cancel"}


class TestDefaultParser(object):

    def test_default_http_client(self):
        assert RelyingParty().httpc is requests.request
        assert RelyingParty(None, LOGIN_URL, {}).httpc is requests.request

    def test_v2_assertion(self):
        store = ApplicationMemoryStore()
        _return_to = "https://example.com/app/login?next=home"
        _query = positive_assertion(_return_to)
        _query["next"] = "home"
        rp = RelyingParty(store, f"{_return_to}&openid.mode=id_res", _query)

        with responses.RequestsMock() as rsps:
            rsps.add("POST", OP_ENDPOINT, body="is_valid:true\n", status=200)
            _resp = rp.response
            assert len(rsps.calls) == 1

        assert _resp.status == AuthenticationStatus.AUTHENTICATED
        assert _resp.claimed_identifier == CLAIMED_ID
        assert _resp.provider_endpoint == OP_ENDPOINT
        assert rp.response is _resp

    def test_v1_assertion(self):
        _return_to = append_query_args("https://example.com/app/login", [
            (RETURN_TO_OP_ENDPOINT, OP_ENDPOINT),
            (RETURN_TO_CLAIMED_ID, "https://bob.example.org/")])
        _query = dict(parse_qsl(urlsplit(_return_to).query))
        _query.update({
            "openid.mode": "id_res",
            "openid.identity": "https://op.example.org/bob",
            "openid.return_to": _return_to,
            "openid.assoc_handle": "h1",
            "openid.signed": "mode,identity,return_to",
            "openid.sig": "c2lnbmF0dXJl",
        })
        rp = RelyingParty(ApplicationMemoryStore(), f"{_return_to}&openid.mode=id_res", _query)

        with responses.RequestsMock() as rsps:
            rsps.add("POST", OP_ENDPOINT, body="is_valid:true\n", status=200)
            _resp = rp.response

        assert _resp.status == AuthenticationStatus.AUTHENTICATED
        assert _resp.claimed_identifier == "https://bob.example.org/"
        assert _resp.provider_endpoint == OP_ENDPOINT

    def test_invalid_claimed_identifier(self):
        _return_to = "https://example.com/app/login"
        _query = positive_assertion(_return_to, claimed_id="ftp://alice.example.org/")
        rp = RelyingParty(None, f"{_return_to}?openid.mode=id_res", _query)

        with responses.RequestsMock():
            _resp = rp.response

        assert _resp.status == AuthenticationStatus.FAILED
        assert isinstance(_resp.exception, ProtocolError)
        assert "ftp://alice.example.org/" in _resp.message
