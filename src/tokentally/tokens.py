from typing import Mapping, Protocol


class TokenProvider(Protocol):
    """
    TokenProvider supplies session credentials for API-based
    providers. How the token is obtained (keychain, settings UI,
    environment) is up to the implementation.
    """

    def get_session_token(self, provider: "str") -> "str | None": ...


class StaticTokenProvider:
    """
    serves tokens from a fixed mapping of provider name to token.
    """

    def __init__(self, tokens: "Mapping[str, str] | None" = None) -> "None":
        self._tokens: "dict[str, str]" = dict(tokens or {})

    def set_session_token(self, provider: "str", token: "str | None") -> "None":
        if token:
            self._tokens[provider] = token
        else:
            self._tokens.pop(provider, None)

    def get_session_token(self, provider: "str") -> "str | None":
        return self._tokens.get(provider) or None
