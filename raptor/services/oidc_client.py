"""OpenID Connect provider client (authorization code flow).

Claims are taken from the ID token only; the userinfo endpoint is never called.
When the backend reaches the provider through a different host than the browser
does (``internal_issuer_uri``), server-side endpoints from discovery are rewritten
to that host while the ``iss`` check still uses the public issuer.
"""
from typing import Any, Dict, Optional
from urllib.parse import urlencode
import logging

import httpx
from jose import JWTError, jwt

from raptor.core.config import settings, Settings
from raptor.utils.errors import InvalidTokenError, OidcProviderError

logger = logging.getLogger(__name__)

ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512"]


class OidcClient:
    def __init__(
        self,
        issuer_uri: str,
        client_id: str,
        client_secret: Optional[str],
        redirect_uri: str,
        scopes: str = "openid profile email",
        timeout: float = 10.0,
        internal_issuer_uri: Optional[str] = None,
        additional_params: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.issuer_uri = (issuer_uri or "").rstrip("/")
        self.internal_issuer_uri = (internal_issuer_uri or "").rstrip("/") or None
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.timeout = timeout
        self.additional_params = dict(additional_params or {})
        self._transport = transport
        self._metadata: Optional[Dict[str, Any]] = None
        self._jwks: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "OidcClient":
        return cls(
            issuer_uri=source.OIDC_ISSUER_URI,
            client_id=source.OIDC_CLIENT_ID,
            client_secret=source.OIDC_CLIENT_SECRET,
            redirect_uri=source.OIDC_REDIRECT_URI,
            scopes=source.OIDC_SCOPES,
            timeout=source.OIDC_HTTP_TIMEOUT_SECONDS,
            internal_issuer_uri=source.OIDC_INTERNAL_ISSUER_URI,
            additional_params=source.OIDC_ADDITIONAL_PARAMS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.issuer_uri and self.client_id and self.redirect_uri)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _server_side(self, url: str) -> str:
        if self.internal_issuer_uri and url.startswith(self.issuer_uri):
            return self.internal_issuer_uri + url[len(self.issuer_uri):]
        return url

    async def _get_json(self, url: str) -> Dict[str, Any]:
        try:
            async with self._http() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"OIDC provider request to {url} failed: {e}")
            raise OidcProviderError(f"Identity provider request failed: {e}") from e

    async def discover(self) -> Dict[str, Any]:
        if self._metadata is None:
            base = self.internal_issuer_uri or self.issuer_uri
            metadata = await self._get_json(f"{base}/.well-known/openid-configuration")
            for key in ("authorization_endpoint", "token_endpoint", "jwks_uri"):
                if not metadata.get(key):
                    raise OidcProviderError(f"Discovery document is missing {key}")
            self._metadata = metadata
        return self._metadata

    async def jwks(self, refresh: bool = False) -> Dict[str, Any]:
        if self._jwks is None or refresh:
            metadata = await self.discover()
            self._jwks = await self._get_json(self._server_side(metadata["jwks_uri"]))
        return self._jwks

    def resolve_authorization_request(self, params: Dict[str, str]) -> Dict[str, str]:
        """Add configured provider-specific parameters (acr_values, prompt, ...).

        Returns ``params`` itself when nothing extra is configured.
        """
        if not self.additional_params:
            return params
        resolved = dict(params)
        resolved.update(self.additional_params)
        return resolved

    async def authorization_url(self, state: str, nonce: str) -> str:
        metadata = await self.discover()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": state,
            "nonce": nonce,
        }
        params = self.resolve_authorization_request(params)
        endpoint = metadata["authorization_endpoint"]
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        metadata = await self.discover()
        token_endpoint = self._server_side(metadata["token_endpoint"])
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret

        try:
            async with self._http() as client:
                response = await client.post(
                    token_endpoint, data=form, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Authorization code exchange failed: {e}")
            raise OidcProviderError(f"Token exchange failed: {e}") from e

        if not body.get("id_token"):
            raise OidcProviderError("Token response did not include an id_token")
        return body

    async def verify_id_token(
        self, id_token: str, nonce: Optional[str] = None, access_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """Validate signature (JWKS), issuer, audience, expiry and nonce."""
        try:
            claims = self._decode_id_token(id_token, await self.jwks(), access_token)
        except JWTError:
            # the provider may have rotated its keys since we cached them
            try:
                claims = self._decode_id_token(id_token, await self.jwks(refresh=True), access_token)
            except JWTError as e:
                raise InvalidTokenError(f"ID token validation failed: {e}") from e

        if nonce is not None and claims.get("nonce") != nonce:
            raise InvalidTokenError("ID token nonce mismatch")
        return claims

    def _decode_id_token(
        self, id_token: str, keys: Dict[str, Any], access_token: Optional[str]
    ) -> Dict[str, Any]:
        return jwt.decode(
            id_token,
            keys,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=self.client_id,
            issuer=self.issuer_uri,
            access_token=access_token,
        )
