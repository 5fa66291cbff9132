import sys
from pathlib import Path
import os
from datetime import datetime

from werkzeug.security import generate_password_hash
from sqlalchemy.orm import Session

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts._db_utils import script_session

from app.biohost import entitlements
from app.biohost.models import Permission, Role, User
from app.biohost.modules.page_templates.models import Template
from app.biohost.modules.page_templates.presets import SYSTEM_TEMPLATES
from app.biohost.modules.themes.models import Theme
from app.biohost.modules.themes.presets import SYSTEM_THEMES

# key -> display name. Order is the order they appear in the admin role.
PERMISSIONS = {
    "admin.view": "Admin: view audit log and entitlements",
    "admin.edit": "Admin: manage accounts",
    "biolinks.view": "Biolinks: view",
    "biolinks.create": "Biolinks: create",
    "biolinks.edit": "Biolinks: edit",
    "biolinks.delete": "Biolinks: delete",
    "projects.manage": "Projects: manage",
    "domains.manage": "Domains: manage",
    "notifications.manage": "Notifications: manage handlers",
    "pixels.manage": "Pixels: manage",
    "themes.manage": "Themes: manage",
    "templates.manage": "Templates: manage",
    "analytics.view": "Analytics: view",
    "qr.manage": "QR codes: manage",
    "pwa.manage": "PWA: manage",
}

# Admin accounts get every paid feature without limits.
ADMIN_ENTITLEMENTS = {code: (True, None) for code in entitlements.FEATURES}


def seed_system_themes(s: Session) -> int:
    now = datetime.utcnow()
    created = 0
    for sort_order, (slug, name, category, premium, settings) in enumerate(SYSTEM_THEMES):
        theme = s.query(Theme).filter(Theme.slug == slug).one_or_none()
        if not theme:
            theme = Theme(slug=slug, created_at=now)
            s.add(theme)
            created += 1
        theme.user_id = None
        theme.name = name
        theme.category = category
        theme.settings = settings
        theme.is_system = True
        theme.is_premium = premium
        theme.is_gallery = True
        theme.is_active = True
        theme.sort_order = sort_order
        theme.updated_at = now
    return created


def seed_system_templates(s: Session) -> int:
    now = datetime.utcnow()
    created = 0
    for sort_order, preset in enumerate(SYSTEM_TEMPLATES):
        template = s.query(Template).filter(Template.slug == preset["slug"]).one_or_none()
        if not template:
            template = Template(slug=preset["slug"], created_at=now, usage_count=0)
            s.add(template)
            created += 1
        template.user_id = None
        template.name = preset["name"]
        template.category = preset["category"]
        template.description = preset.get("description")
        template.blocks_json = preset["blocks"]
        template.settings_json = preset.get("settings") or {}
        template.placeholders = preset.get("placeholders")
        template.tags = preset.get("tags")
        template.is_system = True
        template.is_premium = bool(preset.get("premium"))
        template.is_active = True
        template.sort_order = sort_order
        template.updated_at = now
    return created


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user plus system themes and templates in an idempotent way.
    Does NOT overwrite an existing admin user's password or entitlement overrides.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@bio.host.uk.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///biohost.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with script_session(db_url) as s:
        # Permissions (idempotent)
        def ensure_perm(key: str, name: str) -> Permission:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            return p

        def ensure_role(key: str, name: str) -> Role:
            r = s.query(Role).filter(Role.key == key).one_or_none()
            if not r:
                r = Role(key=key, name=name)
                s.add(r)
            return r

        perms = {key: ensure_perm(key, name) for key, name in PERMISSIONS.items()}

        # Roles
        role_admin = ensure_role("admin", "Administrator")
        for p in perms.values():
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        role_creator = ensure_role("creator", "Creator")
        for key, p in perms.items():
            if key.startswith("admin."):
                continue
            if p not in role_creator.permissions:
                role_creator.permissions.append(p)

        # User
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
            s.flush()
        if role_admin not in user.roles:
            user.roles.append(role_admin)
        existing = {row.feature_code for row in user.entitlements}
        for code, (enabled, limit) in ADMIN_ENTITLEMENTS.items():
            if code not in existing:
                entitlements.set_entitlement(s, user, code, enabled=enabled, limit=limit)

        themes_created = seed_system_themes(s)
        templates_created = seed_system_templates(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"System themes created: {themes_created}; system templates created: {templates_created}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
