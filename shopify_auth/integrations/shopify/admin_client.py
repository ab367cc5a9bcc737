"""
Shopify Admin GraphQL client for webhook subscriptions.

Only the two operations webhook reconciliation needs are implemented:
- webhookSubscriptions: list a shop's current subscriptions (paginated)
- webhookSubscriptionCreate: subscribe a topic to an HTTP callback

Subscriptions are never updated or deleted here.

Documentation: https://shopify.dev/docs/api/admin-graphql/latest/mutations/webhookSubscriptionCreate
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from shopify_auth.config.app_config import DEFAULT_API_VERSION
from shopify_auth.errors import ShopifyAPIError, WebhookError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

LIST_WEBHOOK_SUBSCRIPTIONS_QUERY = """
query webhookSubscriptions($first: Int!, $after: String) {
  webhookSubscriptions(first: $first, after: $after) {
    edges {
      node {
        id
        topic
        format
        endpoint {
          __typename
          ... on WebhookHttpEndpoint {
            callbackUrl
          }
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

CREATE_WEBHOOK_SUBSCRIPTION_MUTATION = """
mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
    webhookSubscription {
      id
      topic
      format
      endpoint {
        __typename
        ... on WebhookHttpEndpoint {
          callbackUrl
        }
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""


@dataclass(frozen=True)
class WebhookSubscription:
    """A webhook subscription as reported by the Admin API."""
    id: str  # GraphQL GID
    topic: str
    callback_url: Optional[str] = None
    format: Optional[str] = None

    @classmethod
    def from_node(cls, node: Any) -> "WebhookSubscription":
        """
        Build from a GraphQL node.

        Raises:
            ValueError: If the node has no `id` or `topic`
        """
        if not isinstance(node, dict) or not node.get("id") or not node.get("topic"):
            raise ValueError(f"Malformed webhook subscription node: {node!r}")
        endpoint = node.get("endpoint") or {}
        return cls(
            id=node["id"],
            topic=node["topic"],
            callback_url=endpoint.get("callbackUrl"),
            format=node.get("format"),
        )


class ShopifyAdminClient:
    """
    Client for a single shop's Admin GraphQL API.

    SECURITY: The access token is sent only in the X-Shopify-Access-Token
    header and never logged.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize the client for a specific shop.

        Args:
            shop_domain: Shopify store domain (e.g., 'mystore.myshopify.com')
            access_token: Decrypted Shopify access token
            api_version: Admin API version (e.g., '2024-04')
            http_client: Optional shared client (not closed by this instance)
            timeout: Request timeout in seconds when creating a client
        """
        if not shop_domain:
            raise ValueError("shop_domain is required")
        if not access_token:
            raise ValueError("access_token is required")

        self.shop_domain = shop_domain
        self.api_version = api_version
        self.graphql_url = f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"
        self._headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": access_token,
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _execute_graphql(self, query: str, variables: Optional[dict] = None) -> dict:
        """
        Execute a GraphQL query against Shopify Admin API.

        Args:
            query: GraphQL query or mutation
            variables: Optional query variables

        Returns:
            GraphQL response data

        Raises:
            ShopifyAPIError: If the API call fails
        """
        payload = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._client.post(self.graphql_url, json=payload, headers=self._headers)
        except httpx.TimeoutException as e:
            logger.error("Shopify API timeout", extra={
                "shop_domain": self.shop_domain,
                "error": str(e)
            })
            raise ShopifyAPIError(f"Request timeout: {e}")
        except httpx.RequestError as e:
            logger.error("Shopify API request error", extra={
                "shop_domain": self.shop_domain,
                "error": str(e)
            })
            raise ShopifyAPIError(f"Request error: {e}")
        except httpx.InvalidURL as e:
            logger.error("Shopify API URL invalid", extra={
                "shop_domain": self.shop_domain,
                "error": str(e)
            })
            raise ShopifyAPIError(f"Invalid request URL: {e}")

        if response.status_code == 401:
            logger.error("Shopify API authentication failed", extra={
                "shop_domain": self.shop_domain,
                "status_code": response.status_code
            })
            raise ShopifyAPIError(
                "Authentication failed - access token may be invalid or expired",
                status_code=401
            )

        if response.status_code == 429:
            logger.warning("Shopify API rate limited", extra={
                "shop_domain": self.shop_domain
            })
            raise ShopifyAPIError(
                "Rate limited - please retry after a delay",
                status_code=429
            )

        if response.status_code >= 400:
            logger.error("Shopify API error", extra={
                "shop_domain": self.shop_domain,
                "status_code": response.status_code,
                "response_text": response.text[:500]
            })
            raise ShopifyAPIError(
                f"Shopify API error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError:
            raise ShopifyAPIError(
                "Shopify API returned invalid JSON",
                status_code=response.status_code,
            )

        if result.get("errors"):
            logger.error("GraphQL errors", extra={
                "shop_domain": self.shop_domain,
                "errors": result["errors"]
            })
            raise ShopifyAPIError(
                f"GraphQL errors: {result['errors']}",
                status_code=response.status_code,
                response=result
            )

        return result.get("data") or {}

    async def list_webhook_subscriptions(self) -> List[WebhookSubscription]:
        """
        List all webhook subscriptions for the shop.

        Raises:
            ShopifyAPIError: If any page cannot be fetched
            WebhookError: If a listed subscription is malformed
        """
        subscriptions: List[WebhookSubscription] = []
        cursor: Optional[str] = None

        while True:
            variables: Dict[str, Any] = {"first": PAGE_SIZE}
            if cursor:
                variables["after"] = cursor

            data = await self._execute_graphql(LIST_WEBHOOK_SUBSCRIPTIONS_QUERY, variables)
            connection = data.get("webhookSubscriptions") or {}

            for edge in connection.get("edges") or []:
                node = edge.get("node") if isinstance(edge, dict) else None
                try:
                    subscriptions.append(WebhookSubscription.from_node(node))
                except ValueError as e:
                    logger.error("Malformed webhook subscription in listing", extra={
                        "shop_domain": self.shop_domain,
                        "node": node
                    })
                    raise WebhookError(
                        "Webhook subscription listing returned a malformed node",
                        shop=self.shop_domain,
                    ) from e

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
                break
            cursor = page_info["endCursor"]

        return subscriptions

    async def create_webhook_subscription(
        self,
        topic: str,
        callback_url: str,
        format: str = "JSON",
    ) -> WebhookSubscription:
        """
        Subscribe a topic to an HTTP callback.

        Args:
            topic: GraphQL topic enum value (e.g., 'APP_UNINSTALLED')
            callback_url: Absolute callback URL
            format: Payload format, 'JSON' or 'XML'

        Returns:
            The created WebhookSubscription

        Raises:
            ShopifyAPIError: If the API call fails
            WebhookError: If Shopify rejects the subscription or returns a malformed one
        """
        variables = {
            "topic": topic,
            "webhookSubscription": {
                "callbackUrl": callback_url,
                "format": format,
            },
        }

        data = await self._execute_graphql(CREATE_WEBHOOK_SUBSCRIPTION_MUTATION, variables)
        result = data.get("webhookSubscriptionCreate") or {}

        user_errors = result.get("userErrors") or []
        if user_errors:
            logger.warning("Webhook subscription had user errors", extra={
                "shop_domain": self.shop_domain,
                "topic": topic,
                "user_errors": user_errors
            })
            raise WebhookError(
                f"Webhook subscription for {topic} rejected",
                shop=self.shop_domain,
                topic=topic,
                user_errors=user_errors,
            )

        node = result.get("webhookSubscription")
        if not node:
            raise WebhookError(
                f"Webhook subscription for {topic} missing from response",
                shop=self.shop_domain,
                topic=topic,
            )

        try:
            return WebhookSubscription.from_node(node)
        except ValueError as e:
            raise WebhookError(
                f"Webhook subscription for {topic} malformed in response",
                shop=self.shop_domain,
                topic=topic,
            ) from e
