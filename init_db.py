"""
Database initialization script for deployment
Run with: python init_db.py
"""

from app import create_app, dispose_store
from models import db, ensure_bracket_locks, ensure_schema_integrity, SPORTS


def initialize_database(app=None):
    """Create tables, apply uniqueness fixes and seed the per-sport lock rows"""
    app = app or create_app()
    with app.app_context():
        print("Creating database tables...")
        db.create_all()

        applied = ensure_schema_integrity()
        for index_name in applied:
            print(f"  added unique index {index_name}")

        seeded = ensure_bracket_locks()
        print(f"Bracket locks ready for {len(SPORTS)} sports ({len(seeded)} new)")

        print("✅ Database initialized successfully!")
    return app


if __name__ == "__main__":
    dispose_store(initialize_database())
