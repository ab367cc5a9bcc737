"""
Authentication state machine for embedded app requests and OAuth callbacks.

Embedded requests move through:

    UNAUTHENTICATED -> TOKEN_VALIDATED -> SESSION_ESTABLISHED
    UNAUTHENTICATED -> BOUNCE (session token missing or rejected)

1. The session token is read from the `id_token` param or the bearer header.
2. A rejected token bounces the client to /auth/session-token-bounce, where
   App Bridge fetches a fresh token and reloads the original URL.
3. A verified token yields a session id. A stored, unexpired session is
   reused; otherwise the token is exchanged for an access token, persisted,
   and handed to the post-auth hook. Exchange-and-persist is serialized per
   session id so concurrent requests for a new shop exchange once.

Install/update callbacks verify the query HMAC, exchange the authorization
code and call the install/update hook with the shop's credentials.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Type
from urllib.parse import urlencode

from shopify_auth.config.app_config import AppConfig
from shopify_auth.errors import (
    AuthError,
    ExchangeError,
    HMACVerificationError,
    InstallError,
    MissingClaimError,
    UpdateError,
    ValidationError,
    WebhookError,
)
from shopify_auth.integrations.shopify.oauth_client import TokenExchangeClient
from shopify_auth.models.session import (
    Session,
    ShopCredentials,
    offline_session_id,
    online_session_id,
)
from shopify_auth.platform.keyed_lock import KeyedLock
from shopify_auth.services.hmac_verifier import HmacVerifier, QueryInput, query_items
from shopify_auth.services.session_store import SessionStore
from shopify_auth.services.session_token import SessionTokenAuthenticator, SessionTokenClaims
from shopify_auth.services.shop_validator import ShopValidator, validate_host
from shopify_auth.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

BOUNCE_PATH = "/auth/session-token-bounce"
INSTALL_PATH = "/auth/install"
RELOAD_PARAM = "shopify-reload"
ID_TOKEN_PARAM = "id_token"
DEFAULT_LOCALE = "en"

PostAuthHook = Callable[[Session], Awaitable[None]]
CallbackHook = Callable[[ShopCredentials, Optional[str]], Awaitable[Optional[Any]]]


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    TOKEN_VALIDATED = "token_validated"
    SESSION_ESTABLISHED = "session_established"
    BOUNCE = "bounce"


@dataclass
class AuthResult:
    """Outcome of authenticating one embedded request."""
    state: AuthState
    session: Optional[Session] = None
    claims: Optional[SessionTokenClaims] = None
    bounce_url: Optional[str] = None
    error: Optional[AuthError] = None
    exchanged: bool = False
    locale: str = DEFAULT_LOCALE
    host: Optional[str] = None

    @property
    def shop(self) -> Optional[str]:
        return self.session.shop if self.session else None


@dataclass
class CallbackResult:
    """Outcome of an install or update callback."""
    credentials: ShopCredentials
    redirect_url: str
    response: Optional[Any] = None  # returned by the hook, if any


async def _no_post_auth(session: Session) -> None:
    return None


async def _no_callback(credentials: ShopCredentials, state: Optional[str]) -> None:
    return None


@dataclass
class AuthHooks:
    """
    Application callbacks.

    - post_auth(session): after a new session has been persisted
    - on_install(credentials, state) / on_update(credentials, state): after a
      successful code exchange. Returning a response replaces the default
      redirect to the app inside the Shopify admin.
    """
    post_auth: PostAuthHook = field(default=_no_post_auth)
    on_install: CallbackHook = field(default=_no_callback)
    on_update: CallbackHook = field(default=_no_callback)


def extract_session_token(query: QueryInput, headers: Mapping[str, str]) -> Optional[str]:
    """Session token from the `id_token` param, else from `Authorization: Bearer`."""
    params = dict(query_items(query))
    if params.get(ID_TOKEN_PARAM):
        return params[ID_TOKEN_PARAM]

    authorization = headers.get("authorization") or headers.get("Authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()

    return None


class AuthOrchestrator:
    """
    Coordinates token verification, session lookup, token exchange and
    OAuth callbacks for one app.
    """

    def __init__(
        self,
        config: AppConfig,
        store: SessionStore,
        exchange_client: Optional[TokenExchangeClient] = None,
        hooks: Optional[AuthHooks] = None,
        reconciler: Optional[WebhookReconciler] = None,
    ):
        self.config = config
        self.store = store
        self.hooks = hooks or AuthHooks()
        self.shop_validator = ShopValidator(config.allowed_shop_domains)
        self.authenticator = SessionTokenAuthenticator(config, self.shop_validator)
        self.verifier = HmacVerifier(config.client_secret)
        self.exchange_client = exchange_client or TokenExchangeClient(config)
        self.reconciler = reconciler or WebhookReconciler(config)
        self._locks = KeyedLock()

    async def close(self):
        await self.exchange_client.close()

    # =========================================================================
    # Embedded requests
    # =========================================================================

    def bounce_url(self, path: str, query: QueryInput) -> str:
        """
        URL of the session token bounce page for a rejected request.

        The original query (minus `id_token`) is forwarded, plus
        `shopify-reload` holding the path and query to return to.
        """
        params = [(key, value) for key, value in query_items(query) if key != ID_TOKEN_PARAM]
        reload_url = f"{path}?{urlencode(params)}" if params else path
        params.append((RELOAD_PARAM, reload_url))
        return f"{BOUNCE_PATH}?{urlencode(params)}"

    def session_id_for(self, claims: SessionTokenClaims) -> str:
        """Online id when online tokens are used, offline id otherwise."""
        if self.config.use_online_tokens:
            user_id = claims.user_id or claims.sub
            if not user_id:
                raise MissingClaimError("sub", "Online sessions require a user in the session token")
            return online_session_id(claims.shop, user_id)
        return offline_session_id(claims.shop)

    async def authenticate(
        self,
        path: str,
        query: QueryInput,
        headers: Mapping[str, str],
    ) -> AuthResult:
        """
        Authenticate an embedded app request.

        Args:
            path: Request path (used to build the reload URL on bounce)
            query: Request query parameters
            headers: Request headers

        Returns:
            AuthResult in state SESSION_ESTABLISHED or BOUNCE

        Raises:
            ExchangeError: If a new session could not be obtained
            SessionStoreError: If the session could not be read or stored
        """
        token = extract_session_token(query, headers)

        try:
            claims = self.authenticator.authenticate(token)
            session_id = self.session_id_for(claims)
        except AuthError as e:
            logger.info("Session token rejected, bouncing", extra={"path": path, "reason": e.kind.value})
            return AuthResult(
                state=AuthState.BOUNCE,
                bounce_url=self.bounce_url(path, query),
                error=e,
            )

        params = dict(query_items(query))
        result = AuthResult(
            state=AuthState.TOKEN_VALIDATED,
            claims=claims,
            locale=params.get("locale") or claims.loc or DEFAULT_LOCALE,
            host=validate_host(params.get("host")) or claims.host,
        )

        session = await self.store.get(session_id)
        if session is not None and (session.is_active() or not self.config.reexchange_expired_sessions):
            result.state = AuthState.SESSION_ESTABLISHED
            result.session = session
            return result

        async with self._locks.hold(session_id):
            # A concurrent request may have exchanged while we waited
            session = await self.store.get(session_id)
            if session is not None and session.is_active():
                result.state = AuthState.SESSION_ESTABLISHED
                result.session = session
                return result

            if session is not None:
                logger.info("Stored session expired, exchanging again", extra={"session_id": session_id})

            session = await self.exchange_client.exchange_session_token(
                claims.shop,
                token,
                online=self.config.use_online_tokens,
            )
            await self.store.put(session_id, session)

        logger.info("New session established", extra={"session_id": session_id, "shop_domain": claims.shop})
        result.state = AuthState.SESSION_ESTABLISHED
        result.session = session
        result.exchanged = True

        await self.hooks.post_auth(session)
        await self._register_webhooks(session)
        return result

    async def _register_webhooks(self, session: Session) -> None:
        if not self.config.register_webhooks_on_auth:
            return
        try:
            await self.reconciler.reconcile(session)
        except WebhookError as e:
            logger.warning("Webhook registration failed", extra={
                "shop_domain": session.shop,
                "error": e.message,
            })

    # =========================================================================
    # OAuth install / update callbacks
    # =========================================================================

    def app_url(self, shop: str) -> str:
        """The app inside the shop's admin."""
        return f"https://{shop}/admin/apps/{self.config.client_id}"

    def begin_install(self, query: QueryInput, state: Optional[str] = None) -> str:
        """
        Authorization URL for a signed install request.

        Raises:
            HMACVerificationError: If the request signature does not match
            InvalidShopDomainError: If the shop domain is invalid
        """
        params = dict(query_items(query))
        shop = self._verify_signed_request(query, params)

        authorize_params: Dict[str, str] = {
            "client_id": self.config.client_id,
            "scope": ",".join(self.config.scopes),
            "redirect_uri": f"{self.config.endpoint_url}{INSTALL_PATH}",
        }
        if state:
            authorize_params["state"] = state

        logger.info("Redirecting to Shopify authorization", extra={"shop_domain": shop})
        return f"https://{shop}/admin/oauth/authorize?{urlencode(authorize_params)}"

    async def complete_install(self, query: QueryInput) -> CallbackResult:
        """
        Handle the install callback.

        Raises:
            HMACVerificationError: If the request signature does not match
            ValidationError: If the shop or code is missing or invalid
            InstallError: If the code exchange fails
        """
        return await self._complete_callback(query, InstallError, self.hooks.on_install, "Install")

    async def complete_update(self, query: QueryInput) -> CallbackResult:
        """
        Handle the update (re-authorization) callback.

        Raises:
            HMACVerificationError: If the request signature does not match
            ValidationError: If the shop or code is missing or invalid
            UpdateError: If the code exchange fails
        """
        return await self._complete_callback(query, UpdateError, self.hooks.on_update, "Update")

    def _verify_signed_request(self, query: QueryInput, params: Dict[str, str]) -> str:
        shop = params.get("shop")
        if not self.verifier.verify_query(query):
            logger.warning("Invalid OAuth callback HMAC", extra={"shop": shop})
            raise HMACVerificationError(shop=shop)
        return self.shop_validator.require_valid_shop(shop)

    async def _complete_callback(
        self,
        query: QueryInput,
        error_class: Type[ExchangeError],
        hook: CallbackHook,
        action: str,
    ) -> CallbackResult:
        params = dict(query_items(query))
        shop = self._verify_signed_request(query, params)

        code = params.get("code")
        if not code:
            raise ValidationError("Missing authorization code", shop=shop)

        try:
            credentials = await self.exchange_client.exchange_authorization_code(shop, code)
        except ExchangeError as e:
            raise error_class(
                f"{action} failed for {shop}: {e.message}",
                shop=shop,
                status_code=e.status_code,
                cause=e,
            ) from e

        logger.info(f"{action} completed", extra={"shop_domain": shop})
        response = await hook(credentials, params.get("state"))

        return CallbackResult(
            credentials=credentials,
            redirect_url=self.app_url(shop),
            response=response,
        )
