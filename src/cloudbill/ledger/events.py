from sqlalchemy import select
from sqlalchemy.orm import Session

from cloudbill.models.payment import ProcessedEvent


class ProcessedEventRepository:
    """Remembers which provider event ids have already been applied."""

    def __init__(self, session: Session):
        self.session = session

    def has_processed(self, event_id: str, tenant_id: str) -> bool:
        stmt = select(ProcessedEvent.id).where(
            ProcessedEvent.event_id == event_id, ProcessedEvent.tenant_id == tenant_id
        )
        return self.session.scalars(stmt).first() is not None

    def record(self, event_id: str, tenant_id: str, event_type: str) -> ProcessedEvent:
        entry = ProcessedEvent(event_id=event_id, tenant_id=tenant_id, event_type=event_type)
        self.session.add(entry)
        self.session.flush()
        return entry
