from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import requests

from podalarm.notification.base import NotificationEvent


@dataclass(frozen=True)
class WebhookConfig:
    """
    Configuration for a webhook-backed delivery channel.

    Email, SMS and push are delivered through gateway webhooks (e.g. an email
    relay or SMS provider endpoint).

    Parameters
    ----------
    url
        Target webhook URL.
    timeout_s
        HTTP request timeout in seconds.
    verify_tls
        Whether to verify TLS certificates.
    auth_header
        Optional Authorization header value (e.g., Bearer token).
    """

    url: str
    timeout_s: float = 2.0
    verify_tls: bool = True
    auth_header: Optional[str] = None


class WebhookNotifier:
    """
    Channel notifier that delivers events via HTTP webhook.

    The request body is the event payload plus delivery metadata
    (``notification_id``, ``channel``, ``to``).

    Notes
    -----
    - This class performs side effects (network I/O).
    - HTTP errors are surfaced via ``raise_for_status()``.
    """

    def __init__(self, cfg: WebhookConfig):
        self._cfg = cfg

    def notify(self, event: NotificationEvent) -> None:
        """
        Send one notification to the configured gateway.

        Parameters
        ----------
        event
            Delivery event.

        Raises
        ------
        requests.HTTPError
            If the HTTP response status indicates an error.
        requests.RequestException
            For network-related errors.
        """
        headers = {"Content-Type": "application/json"}
        if self._cfg.auth_header:
            headers["Authorization"] = self._cfg.auth_header

        body = {
            "notification_id": event.notification_id,
            "channel": event.channel.value,
            "to": event.address,
            "type": event.type,
            **event.payload,
        }

        r = requests.post(
            self._cfg.url,
            json=body,
            headers=headers,
            timeout=self._cfg.timeout_s,
            verify=self._cfg.verify_tls,
        )
        r.raise_for_status()
