from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import Optional
from app.db.session import get_db
from app.models.organization import Organization
from app.schemas.tracking import VisitorMeta
import uuid


def get_org_id(
    x_org_id: Optional[str] = Header(None, alias="X-Org-Id"),
    db: Session = Depends(get_db)
) -> uuid.UUID:
    """
    Resolve the tenant for admin routes from the X-Org-Id header.
    Every query made by the route is scoped to this org.
    """
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-Id header is required",
        )
    try:
        org_id = uuid.UUID(x_org_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-Id must be a UUID",
        )

    org = db.query(Organization).filter(Organization.id == org_id).first()
    if not org:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )
    return org_id


def visitor_meta_from_request(request: Request, meta: VisitorMeta) -> VisitorMeta:
    """Fill gaps in body-supplied visitor metadata from the request itself"""
    fallbacks = {}
    if not meta.ip_address:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            fallbacks["ip_address"] = forwarded.split(",")[0].strip()
        elif request.client:
            fallbacks["ip_address"] = request.client.host
    if not meta.user_agent and request.headers.get("user-agent"):
        fallbacks["user_agent"] = request.headers["user-agent"]
    if not meta.referrer and request.headers.get("referer"):
        fallbacks["referrer"] = request.headers["referer"]
    if not fallbacks:
        return meta
    return meta.model_copy(update=fallbacks)
