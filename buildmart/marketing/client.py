"""Thin Facebook Graph API client.

Only the handful of edges the page sync needs are wrapped. Every call carries
the configured timeout, and transport or HTTP failures surface as
``ExternalServiceError`` so the API layer renders them as 502.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from buildmart.core.config import Settings, get_settings
from buildmart.core.errors import ExternalServiceError, ValidationFailedError


logger = logging.getLogger("buildmart.marketing.graph")

POST_FIELDS = (
    "id,message,attachments{media},created_time,"
    "reactions.summary(total_count),comments.summary(total_count),shares.summary(total_count)"
)
POST_INSIGHT_METRICS = "post_impressions,post_impressions_unique,post_reactions_by_type_total"
PAGE_INSIGHT_METRICS = "page_fans,page_views_total,page_impressions,page_impressions_unique"
ENGAGEMENT_FIELDS = "likes.summary(total_count),comments.summary(total_count),shares.summary(total_count)"


def insights_to_dict(payload: dict[str, Any]) -> dict[str, Any]:
    """Flatten a Graph insights response into ``{metric_name: first_value}``."""
    values: dict[str, Any] = {}
    for insight in payload.get("data") or []:
        points = insight.get("values") or []
        if points:
            values[insight.get("name")] = points[0].get("value")
    return values


class FacebookGraphClient:
    def __init__(
        self,
        page_id: str,
        access_token: str,
        *,
        base_url: str,
        timeout: float,
        session: requests.Session | None = None,
    ) -> None:
        self.page_id = page_id
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FacebookGraphClient":
        settings = settings or get_settings()
        if not settings.facebook_page_id or not settings.facebook_page_access_token:
            raise ValidationFailedError("facebook credentials are not configured")
        return cls(
            settings.facebook_page_id,
            settings.facebook_page_access_token,
            base_url=settings.facebook_graph_url,
            timeout=settings.facebook_timeout_seconds,
        )

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.get(
                url,
                params={**params, "access_token": self.access_token},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("graph.request_failed", extra={"path": path, "error": str(exc)})
            raise ExternalServiceError("facebook graph request failed", details={"path": path}) from exc
        return response.json() or {}

    def page_feed(self) -> list[dict[str, Any]]:
        return self._get(f"{self.page_id}/feed", {"fields": POST_FIELDS}).get("data") or []

    def post_insights(self, post_id: str) -> dict[str, Any]:
        return insights_to_dict(self._get(f"{post_id}/insights", {"metric": POST_INSIGHT_METRICS}))

    def page_insights(self) -> dict[str, Any]:
        return insights_to_dict(
            self._get(
                f"{self.page_id}/insights",
                {"metric": PAGE_INSIGHT_METRICS, "period": "day", "date_preset": "yesterday"},
            )
        )

    def posts_between(self, since: str, until: str) -> list[dict[str, Any]]:
        payload = self._get(
            f"{self.page_id}/posts",
            {"fields": ENGAGEMENT_FIELDS, "since": since, "until": until},
        )
        return payload.get("data") or []
