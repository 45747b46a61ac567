"""
Audit log writer.

Every rule authoring action and every assignment an engine run creates or
changes gets one AdminActivityLog row.
"""
import logging
from typing import Any, Dict, List, Optional

from ..extensions import db
from ..models import AdminActivityLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system:engine'


def log_activity(
    actor: str,
    action: str,
    resource_type: str = None,
    resource_id=None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = False
) -> AdminActivityLog:
    """
    Record an audit entry.

    The resource id is mirrored into details so it survives even when the
    resource row is later deleted by the authoring surface.

    Args:
        actor: Admin id or 'system:<component>'
        action: Dotted action name (e.g., 'rewards.badge.grant')
        resource_type: Table/resource kind
        resource_id: Resource identifier
        metadata: Structured extra data
        commit: Commit immediately (otherwise joins the caller's transaction)
    """
    resource_id = str(resource_id) if resource_id is not None else None
    details = dict(metadata or {})
    if resource_id is not None:
        details['resource_id'] = resource_id

    entry = AdminActivityLog(
        actor=actor or SYSTEM_ACTOR,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or None,
    )
    db.session.add(entry)

    if commit:
        db.session.commit()

    logger.info(f'Audit: {entry.actor} {action} {resource_type}:{resource_id}')
    return entry


def recent_activity(limit: int = 100, action_prefix: str = None) -> List[AdminActivityLog]:
    """Most recent audit entries, newest first."""
    query = AdminActivityLog.query
    if action_prefix:
        query = query.filter(AdminActivityLog.action.like(f'{action_prefix}%'))
    return query.order_by(AdminActivityLog.created_at.desc(), AdminActivityLog.id.desc()).limit(limit).all()
