"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import current_app
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


@login_manager.request_loader
def load_member_from_request(request):
    """Resolve the member from the identity provider's header.

    The identity provider sits in front of this service and is trusted as
    given. The account summary row is created the first time a member id
    is seen. Imports lazily to avoid circular deps.
    """
    from seatdesk.services.account_service import get_or_create_account

    header = current_app.config["IDENTITY_HEADER"]
    external_id = (request.headers.get(header) or "").strip()
    if not external_id:
        return None

    return get_or_create_account(
        external_id,
        display_name=request.headers.get("X-Member-Name"),
        email=request.headers.get("X-Member-Email"),
    )
