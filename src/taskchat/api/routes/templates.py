"""
Auto-message template API routes.

Read-only lookups used by clients to preview the annotation a task edit
would produce.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from taskchat.api.schemas import BulkTemplateRequest, TemplateResponse
from taskchat.db.connection import get_db
from taskchat.db.repositories import AutoMessageTemplateRepository
from taskchat.models.db import AutoMessageTemplate

router = APIRouter()


def _to_response(template: AutoMessageTemplate) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        type=template.type,
        from_value=template.from_value,
        to_value=template.to_value,
        content=[str(item) for item in template.content or []],
    )


@router.get("/type/{type}", response_model=list[TemplateResponse])
async def get_templates_by_type(
    type: str,
    session: Session = Depends(get_db),
) -> list[TemplateResponse]:
    """
    Get all templates for a field.

    Raises:
        HTTPException(404): If the field has no templates
    """
    templates = AutoMessageTemplateRepository(session).get_by_type(type)
    if not templates:
        raise HTTPException(status_code=404, detail="No templates found for this type")
    return [_to_response(t) for t in templates]


@router.get("/search", response_model=TemplateResponse)
async def search_template(
    from_value: str = Query(..., alias="from", description="Value before the change"),
    to_value: str = Query(..., alias="to", description="Value after the change"),
    type: str = Query(..., description="Field name"),
    session: Session = Depends(get_db),
) -> TemplateResponse:
    """
    Get the template for one field transition.

    Raises:
        HTTPException(404): If no template matches
    """
    template = AutoMessageTemplateRepository(session).find(type, from_value, to_value)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return _to_response(template)


@router.post("/bulk", response_model=list[TemplateResponse])
async def bulk_search_templates(
    body: BulkTemplateRequest,
    session: Session = Depends(get_db),
) -> list[TemplateResponse]:
    """Get templates for several transitions; unmatched ones are left out."""
    transitions = [(c.type, c.from_value, c.to_value) for c in body.changes]
    templates = AutoMessageTemplateRepository(session).find_bulk(transitions)
    return [_to_response(t) for t in templates]
