"""Repository for auto-message templates."""

from typing import List, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from taskchat.db.repositories.base import BaseRepository
from taskchat.models.db import AutoMessageTemplate


class AutoMessageTemplateRepository(BaseRepository[AutoMessageTemplate]):
    """Repository for AutoMessageTemplate model."""

    def __init__(self, session: Session):
        super().__init__(AutoMessageTemplate, session)

    def get_by_type(self, type: str) -> List[AutoMessageTemplate]:
        stmt = (
            select(AutoMessageTemplate)
            .where(AutoMessageTemplate.type == type)
            .order_by(AutoMessageTemplate.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def find(self, type: str, from_value: str, to_value: str) -> Optional[AutoMessageTemplate]:
        """
        Get the template for one field transition.

        Args:
            type: Field name
            from_value: Value before the change
            to_value: Value after the change

        Returns:
            Matching template or None
        """
        stmt = select(AutoMessageTemplate).where(
            AutoMessageTemplate.type == type,
            AutoMessageTemplate.from_value == from_value,
            AutoMessageTemplate.to_value == to_value,
        )
        return self.session.execute(stmt).scalars().first()

    def find_bulk(
        self, transitions: Sequence[tuple[str, str, str]]
    ) -> List[AutoMessageTemplate]:
        """
        Get templates for several (type, from, to) transitions in one query.

        Transitions without a template are simply absent from the result.
        """
        if not transitions:
            return []
        conditions = [
            and_(
                AutoMessageTemplate.type == type,
                AutoMessageTemplate.from_value == from_value,
                AutoMessageTemplate.to_value == to_value,
            )
            for type, from_value, to_value in transitions
        ]
        stmt = (
            select(AutoMessageTemplate)
            .where(or_(*conditions))
            .order_by(AutoMessageTemplate.id)
        )
        return list(self.session.execute(stmt).scalars().all())

    def lookup(
        self, field_changed: str, old_value: Optional[str], new_value: Optional[str]
    ) -> Optional[list[str]]:
        """
        Template messages for a field change, or None when there is none.

        Missing values compare as empty strings.
        """
        template = self.find(field_changed, old_value or "", new_value or "")
        if template is None or not template.content:
            return None
        return [str(item) for item in template.content]

    def save(
        self, type: str, from_value: str, to_value: str, content: Sequence[str]
    ) -> AutoMessageTemplate:
        """Create a template or replace the content of an existing one."""
        template = self.find(type, from_value, to_value)
        if template is None:
            return self.create(
                type=type, from_value=from_value, to_value=to_value, content=list(content)
            )
        template.content = list(content)
        self.session.flush()
        return template
