# manage.py
import json
import sys

from app import create_app
from moodstream.database import db

USAGE = "Usage: python manage.py [create_db | rebuild_index | verify | cleanup [--dry-run]]"


def _app():
    # One-shot commands never need the background sweep
    return create_app({'MAINTENANCE_INTERVAL_SECONDS': 0})


def create_db():
    """Creates the database tables."""
    app = _app()
    with app.app_context():
        db.create_all()
        print(f"Database tables ready at {app.config['SQLALCHEMY_DATABASE_URI']}")


def rebuild_index():
    app = _app()
    with app.app_context():
        manager = app.extensions['content_index']
        if not manager.rebuild_index():
            print("A rebuild is already running.")
            sys.exit(1)
        print(json.dumps(manager.index_info(), indent=2))


def verify():
    app = _app()
    with app.app_context():
        report = app.extensions['content_index'].verify_integrity()
        print(json.dumps(report.to_dict(), indent=2))
        if not report.is_valid:
            sys.exit(2)


def cleanup(dry_run: bool):
    app = _app()
    with app.app_context():
        maintenance = app.extensions['maintenance']
        options = maintenance.cleanup_options.model_copy(update={'dry_run': dry_run})
        result = app.extensions['content_index'].cleanup(options)
        print(json.dumps(result.to_dict(), indent=2))


if __name__ == '__main__':
    if len(sys.argv) > 1:
        command = sys.argv[1]
        if command == 'create_db':
            create_db()
        elif command == 'rebuild_index':
            rebuild_index()
        elif command == 'verify':
            verify()
        elif command == 'cleanup':
            cleanup(dry_run='--dry-run' in sys.argv[2:])
        else:
            print(f"Unknown command: {command}")
            print(USAGE)
    else:
        print(f"No command provided. {USAGE}")
