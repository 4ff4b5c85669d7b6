from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from buildmart.core.config import Settings, get_settings
from buildmart.marketing.client import FacebookGraphClient
from buildmart.marketing.models import FacebookPost, PageMetric
from buildmart.marketing.schemas import (
    FacebookOverview,
    FacebookPostRead,
    HistoricalMetric,
    PageMetricRead,
    SyncResult,
)
from buildmart.metrics import observe_facebook_sync
from buildmart.users.models import utcnow


logger = logging.getLogger("buildmart.marketing")

REACTION_KEYS = ("like", "love", "wow", "haha", "sad", "angry")


def get_post_type(attachments: dict[str, Any] | None) -> str:
    data = (attachments or {}).get("data") or []
    if not data:
        return "text"
    media = data[0].get("media")
    if not media:
        return "text"
    if media.get("source"):
        return "video/reel"
    if media.get("image"):
        return "image"
    return "text"


def _summary_count(post: dict[str, Any], key: str) -> int:
    return int(((post.get(key) or {}).get("summary") or {}).get("total_count") or 0)


def engagement_rate(likes: int, comments: int, shares: int, reach: int) -> float:
    if reach <= 0:
        return 0.0
    return round((likes + comments + shares) / reach * 100, 2)


@dataclass
class FacebookSyncService:
    client_factory: Callable[[Settings], FacebookGraphClient] | None = None
    settings: Settings | None = None

    def _client(self) -> FacebookGraphClient:
        settings = self.settings or get_settings()
        factory = self.client_factory or FacebookGraphClient.from_settings
        return factory(settings)

    def sync_all(self, session: Session, *, now: datetime | None = None) -> SyncResult:
        client = self._client()
        posts_synced = self.sync_posts(session, client)
        metric_stored = self.sync_page_metrics(session, client, now=now)
        return SyncResult(
            message="Successfully synced posts and page metrics",
            posts_synced=posts_synced,
            metric_stored=metric_stored,
        )

    def sync_posts(self, session: Session, client: FacebookGraphClient) -> int:
        try:
            feed = client.page_feed()
            for post_data in feed:
                self._upsert_post(session, client, post_data)
            session.commit()
        except Exception:
            session.rollback()
            observe_facebook_sync("posts", "failure")
            raise
        observe_facebook_sync("posts", "success")
        logger.info("marketing.posts_synced", extra={"count": len(feed)})
        return len(feed)

    def _upsert_post(self, session: Session, client: FacebookGraphClient, post_data: dict[str, Any]) -> FacebookPost:
        insights = client.post_insights(post_data["id"])
        reactions = insights.get("post_reactions_by_type_total") or {}
        values = {
            "likes": sum(int(reactions.get(key) or 0) for key in REACTION_KEYS),
            "comments": _summary_count(post_data, "comments"),
            "shares": int((post_data.get("shares") or {}).get("count") or 0),
            "reach": int(insights.get("post_impressions_unique") or 0),
            "impressions": int(insights.get("post_impressions") or 0),
        }

        post = session.scalar(select(FacebookPost).where(FacebookPost.fb_post_id == post_data["id"]))
        if post is None:
            attachments = post_data.get("attachments") or {}
            first = (attachments.get("data") or [{}])[0]
            created = post_data.get("created_time")
            post = FacebookPost(
                fb_post_id=post_data["id"],
                post_type=get_post_type(attachments),
                content=post_data.get("message") or "",
                media_url=((first.get("media") or {}).get("image") or {}).get("src"),
                created_at=datetime.strptime(created, "%Y-%m-%dT%H:%M:%S%z") if created else utcnow(),
                **values,
            )
            session.add(post)
        else:
            for key, value in values.items():
                setattr(post, key, value)
        session.flush()
        return post

    def sync_page_metrics(self, session: Session, client: FacebookGraphClient, *, now: datetime | None = None) -> bool:
        """Store yesterday's page metrics. Returns False when the day is already recorded."""
        yesterday = ((now or utcnow()) - timedelta(days=1)).date()
        existing = session.scalar(select(PageMetric.id).where(PageMetric.metric_date == yesterday))
        if existing is not None:
            logger.info("marketing.page_metrics_exist", extra={"count": 0})
            observe_facebook_sync("page_metrics", "skipped")
            return False

        try:
            insights = client.page_insights()
            day = yesterday.isoformat()
            engagement = sum(
                _summary_count(post, "likes") + _summary_count(post, "comments") + _summary_count(post, "shares")
                for post in client.posts_between(day, day)
            )
            session.add(
                PageMetric(
                    metric_date=yesterday,
                    follower_count=int(insights.get("page_fans") or 0),
                    page_views=int(insights.get("page_views_total") or 0),
                    page_impressions=int(insights.get("page_impressions") or 0),
                    page_reach=int(insights.get("page_impressions_unique") or 0),
                    engagement=engagement,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            observe_facebook_sync("page_metrics", "failure")
            raise
        observe_facebook_sync("page_metrics", "success")
        logger.info("marketing.page_metrics_stored", extra={"count": 1})
        return True

    def overview(self, session: Session, days: int = 365, *, now: datetime | None = None) -> FacebookOverview:
        since = (now or utcnow()) - timedelta(days=days)
        posts = session.scalars(
            select(FacebookPost).where(FacebookPost.created_at >= since).order_by(FacebookPost.created_at.desc())
        ).all()
        metrics = session.scalars(
            select(PageMetric).where(PageMetric.metric_date >= since.date()).order_by(PageMetric.metric_date.asc())
        ).all()

        post_rows = []
        for post in posts:
            row = FacebookPostRead.model_validate(post)
            row.engagement_rate = engagement_rate(post.likes, post.comments, post.shares, post.reach)
            post_rows.append(row)
        metric_rows = [PageMetricRead.model_validate(metric) for metric in metrics]
        return FacebookOverview(
            posts=post_rows,
            page_metrics=metric_rows,
            latest_metric=metric_rows[-1] if metric_rows else None,
            historical_metrics=[
                HistoricalMetric(
                    date=metric.metric_date,
                    engagement_rate=round(metric.engagement / metric.page_reach * 100, 2) if metric.page_reach > 0 else 0.0,
                    follower_count=metric.follower_count,
                    impressions=metric.page_impressions,
                )
                for metric in metrics
            ],
        )


facebook_sync_service = FacebookSyncService()


def get_facebook_sync_service() -> FacebookSyncService:
    return facebook_sync_service
