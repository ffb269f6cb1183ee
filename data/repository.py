from sqlalchemy import case, func
from sqlalchemy.orm import Session
from data.database import ABTest, ABTestSession


class ABTestRepository:
    """Queries over the ab_tests table. Writes commit; callers roll back on failure."""

    def get(self, db: Session, test_id: int) -> ABTest | None:
        return db.query(ABTest).filter(ABTest.id == test_id).one_or_none()

    def list_for_organization(
        self,
        db: Session,
        organization_id: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ABTest], int]:
        query = db.query(ABTest).filter(ABTest.organization_id == organization_id)
        if status:
            query = query.filter(ABTest.status == status)

        total = query.count()
        items = query.order_by(ABTest.created_at.desc(), ABTest.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def list_by_status(self, db: Session, status: str) -> list[ABTest]:
        return db.query(ABTest).filter(ABTest.status == status).order_by(ABTest.id).all()

    def get_many(self, db: Session, organization_id: str, test_ids: list[int]) -> list[ABTest]:
        return db.query(ABTest).filter(
            ABTest.organization_id == organization_id,
            ABTest.id.in_(test_ids)
        ).all()

    def add(self, db: Session, ab_test: ABTest) -> ABTest:
        db.add(ab_test)
        db.commit()
        db.refresh(ab_test)
        return ab_test

    def update(self, db: Session, ab_test: ABTest, fields: dict) -> ABTest:
        for field, value in fields.items():
            setattr(ab_test, field, value)
        db.add(ab_test)
        db.commit()
        db.refresh(ab_test)
        return ab_test

    def delete(self, db: Session, ab_test: ABTest):
        db.delete(ab_test)
        db.commit()


class ABTestSessionRepository:
    """Queries over the ab_test_sessions table."""

    def get(self, db: Session, test_id: int, session_id: str) -> ABTestSession | None:
        return db.query(ABTestSession).filter(
            ABTestSession.ab_test_id == test_id,
            ABTestSession.session_id == session_id
        ).first()

    def list_for_test(self, db: Session, test_id: int) -> list[ABTestSession]:
        return db.query(ABTestSession).filter(ABTestSession.ab_test_id == test_id).all()

    def search(
        self,
        db: Session,
        test_id: int,
        variant_id: str | None = None,
        converted: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ABTestSession], int]:
        query = db.query(ABTestSession).filter(ABTestSession.ab_test_id == test_id)
        if variant_id:
            query = query.filter(ABTestSession.variant_id == variant_id)
        if converted is not None:
            query = query.filter(ABTestSession.converted == converted)

        total = query.count()
        items = query.order_by(ABTestSession.created_at.desc(), ABTestSession.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def variant_counts(self, db: Session, test_id: int) -> list[tuple[str, int, int]]:
        """(variant_id, sessions, conversions) grouped in the database."""
        converted_count = func.sum(case((ABTestSession.converted.is_(True), 1), else_=0))
        rows = db.query(
            ABTestSession.variant_id,
            func.count(ABTestSession.id).label('sessions'),
            converted_count.label('conversions')
        ).filter(
            ABTestSession.ab_test_id == test_id
        ).group_by(ABTestSession.variant_id).all()
        return [(variant_id, sessions, int(conversions or 0)) for variant_id, sessions, conversions in rows]

    def insert(self, db: Session, session: ABTestSession) -> ABTestSession:
        db.add(session)
        db.commit() # unique constraint on (ab_test_id, session_id) is checked here
        db.refresh(session)
        return session

    def update(self, db: Session, session: ABTestSession) -> ABTestSession:
        db.add(session)
        db.commit()
        db.refresh(session)
        return session


ab_tests = ABTestRepository()
ab_test_sessions = ABTestSessionRepository()
