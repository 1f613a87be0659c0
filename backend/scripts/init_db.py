"""
Database initialization script.
Creates tables, migrates legacy request statuses and seeds the admin user.

    python scripts/init_db.py            (from the backend/ directory)
"""
import sys
sys.path.insert(0, '.')

from health_requests.config import get_settings
from health_requests.database import init_db, migrate_legacy_statuses, SessionLocal, User as UserDB
from health_requests.services.auth_service import AuthService

settings = get_settings()


def seed_admin(db) -> bool:
    if db.query(UserDB).filter(UserDB.username == "admin").first():
        return False

    db.add(UserDB(
        username="admin",
        email=None,
        full_name="Administrador do Sistema",
        role="admin",
        hashed_password=AuthService.get_password_hash("admin123"),  # Change in production!
        is_active=True
    ))
    db.commit()
    return True


def init_database():
    """Initialize database tables and seed data."""
    print("🔧 Initializing database...")
    init_db()

    db = SessionLocal()
    try:
        print("📝 Migrating legacy request statuses...")
        migrated = migrate_legacy_statuses(db)
        print(f"   {migrated} request(s) updated")

        print("👤 Checking for admin user...")
        if seed_admin(db):
            print("✅ Admin user created: admin / admin123")
            print("⚠️  Please change the admin password in production!")
        else:
            print("✅ Admin user already exists")
    finally:
        db.close()

    print("\n🎉 Database initialization complete!")


if __name__ == "__main__":
    init_database()
