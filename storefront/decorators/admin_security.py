"""
Admin security decorators.
Provides authentication for the back-office JSON API.
"""

from functools import wraps
from flask import session, jsonify, g


def admin_required(f):
    """
    Decorator: Require admin user to be logged in.

    Answers 401 JSON when there is no admin in the session, otherwise loads the
    AdminUser into g.admin (the audit log reads the actor from there).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_user_id = session.get('admin_user_id')

        if not admin_user_id:
            return jsonify({'success': False, 'error': 'Authentication required'}), 401

        from storefront.database import db_session
        from storefront.models import AdminUser

        admin_user = db_session.get(AdminUser, admin_user_id)

        if not admin_user:
            # Admin user no longer exists in database
            session.pop('admin_user_id', None)
            return jsonify({'success': False, 'error': 'Invalid admin session'}), 401

        g.admin = admin_user

        return f(*args, **kwargs)

    return decorated_function
