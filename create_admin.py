import os
import sys

import sqlalchemy as sa

from onboarding import create_app
from onboarding.constants import Label, Role
from onboarding.extensions import db
from onboarding.models import User
from onboarding.utils.passwords import hash_password, validate_password

EMAIL = os.environ.get("ADMIN_EMAIL", "admin@supplier-onboarding.local").strip().lower()
PASSWORD = os.environ.get("ADMIN_PASSWORD", "")

ok, message = validate_password(PASSWORD)
if not ok:
    sys.exit(f"ADMIN_PASSWORD: {message}")

app = create_app()

with app.app_context():
    admin = db.session.scalars(sa.select(User).where(sa.func.lower(User.email) == EMAIL)).first()

    if admin is None:
        print("🔐 Creating admin user...")
        admin = User(email=EMAIL, first_name="Admin", last_name="User")
        db.session.add(admin)
    else:
        print("🔁 Updating existing admin user...")

    admin.password_hash = hash_password(PASSWORD)
    admin.is_active = True
    admin.activation_token = None
    admin.activation_expires_at = None
    admin.set_roles({Role.ADMIN, Role.INKOPER, Role.FINANCE, Role.ERP})
    admin.set_labels(set(Label))

    db.session.commit()

    print("✅ Admin ready:", EMAIL)
