import httpx
import structlog

logger = structlog.get_logger()


class WebhookNotifier:
    """
    WebhookNotifier posts alert text as {"text": ...} to a chat-style
    incoming webhook. Without a URL configured, sending is a no-op.
    """

    def __init__(
        self,
        url: "str",
        timeout: "float" = 10.0,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._url = url
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> "bool":
        return bool(self._url)

    async def close(self) -> "None":
        await self._client.aclose()

    async def send(self, text: "str") -> "None":
        """
        raises httpx.HTTPError on transport failures and non-2xx
        responses so the caller can retry on the next tick.
        """
        if not self._url:
            logger.debug("webhook_disabled")
            return

        resp = await self._client.post(self._url, json={"text": text})
        resp.raise_for_status()
        logger.debug("webhook_delivered", status=resp.status_code)
