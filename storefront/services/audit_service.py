"""
Audit logging for back-office mutations.

Order, catalog, stock and promo operations call `log_action` themselves, so
blueprints never write audit rows directly.
"""
import json
import logging
from datetime import datetime, timezone

from flask import g, has_request_context, request

from storefront.models.audit_log import AuditLog, AuditAction

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system'


def _current_actor() -> str:
    if has_request_context():
        admin = g.get('admin')
        if admin is not None:
            return admin.email
    return SYSTEM_ACTOR


def log_action(
    session,
    action: AuditAction,
    resource_type: str = None,
    resource_id=None,
    details: dict = None,
    actor: str = None,
):
    """
    Add an audit entry to the session.

    Args:
        session: Database session (caller commits, so the entry shares the
            mutation's transaction)
        action: AuditAction enum value
        resource_type: e.g. 'order', 'product', 'promo_code'
        resource_id: id of the affected resource
        details: Dict with additional details (JSON encoded)
        actor: admin email; defaults to the logged-in admin or 'system'
    """
    try:
        details_json = None
        if details:
            try:
                details_json = json.dumps(details, default=str, ensure_ascii=False)
            except (TypeError, ValueError) as e:
                logger.warning(f"Failed to serialize audit details: {e}")
                details_json = str(details)

        entry = AuditLog(
            admin_email=actor or _current_actor(),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details_json,
            ip_address=request.remote_addr if has_request_context() else None,
            created_at=datetime.now(timezone.utc),
        )
        session.add(entry)
        logger.info(f"Audit log created: {action.value} by {entry.admin_email} on {resource_type} {resource_id}")
        return entry

    except Exception as e:
        logger.error(f"Failed to create audit log: {e}")
        # Audit failures never break the business operation
        return None


def get_audit_logs(session, limit: int = 100, offset: int = 0, action_filter: AuditAction = None,
                   resource_type_filter: str = None):
    """Most recent entries first, optionally filtered."""
    query = session.query(AuditLog)

    if action_filter:
        query = query.filter(AuditLog.action == action_filter)

    if resource_type_filter:
        query = query.filter(AuditLog.resource_type == resource_type_filter)

    query = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    return query.limit(limit).offset(offset).all()
