"""Persistence for review photos copied into blob storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from content_jobs.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from content_jobs.storage.sqlmodel_models import ReviewPhotoLink


@dataclass(slots=True)
class ReviewPhotoView:
    review_id: str
    contractor_id: str
    original_url: str
    storage_path: str
    created_at: datetime


class ReviewPhotoRepository:
    """Links a review's external photo URL to its stored copy."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def link(
        self,
        *,
        review_id: str,
        contractor_id: str,
        original_url: str,
        storage_path: str,
    ) -> None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ReviewPhotoLink).where(
                    ReviewPhotoLink.review_id == review_id,
                    ReviewPhotoLink.original_url == original_url,
                ),
            ).one_or_none()
            if row is None:
                row = ReviewPhotoLink(
                    review_id=review_id,
                    contractor_id=contractor_id,
                    original_url=original_url,
                    storage_path=storage_path,
                    created_at=to_db_datetime(utc_now()),
                )
            else:
                row.storage_path = storage_path
            session.add(row)
            session.commit()

    def list_for_contractor(self, *, contractor_id: str) -> list[ReviewPhotoView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ReviewPhotoLink)
                .where(ReviewPhotoLink.contractor_id == contractor_id)
                .order_by(col(ReviewPhotoLink.id).asc()),
            ).all()
        return [
            ReviewPhotoView(
                review_id=row.review_id,
                contractor_id=row.contractor_id,
                original_url=row.original_url,
                storage_path=row.storage_path,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]
