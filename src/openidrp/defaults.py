# Query argument correlating a request with the user's session
DEFAULT_TOKEN_KEY = "token"

# Name under which the default store is published in the application state
APPLICATION_STORE_KEY = "openidrp.rp.RelyingParty.application_store"

DEFAULT_STORE = {
    "class": "openidrp.store.ApplicationMemoryStore",
    "kwargs": {}
}

DEFAULT_REQUEST_BUILDER = "openidrp.rp.request.AuthenticationRequest"

DEFAULT_RESPONSE_PARSER = "openidrp.rp.response.AuthenticationResponse"

DEFAULT_DISCOVERY = {
    "class": "openidrp.discovery.StaticDiscovery",
    "kwargs": {}
}

DEFAULT_RP_CONFIG = {
    "token_key": DEFAULT_TOKEN_KEY,
    "store": DEFAULT_STORE,
    "request_builder": DEFAULT_REQUEST_BUILDER,
    "response_parser": DEFAULT_RESPONSE_PARSER,
    "discovery": DEFAULT_DISCOVERY,
    "httpc_params": {}
}
