import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import MetaData, event
from sqlalchemy.engine import Engine


# 1. Create extension instances WITHOUT an app
# They will be "connected" to the app inside the factory

# Define naming convention for SQLAlchemy
convention = {
    "ix": 'ix_%(column_0_label)s',
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}
metadata = MetaData(naming_convention=convention)

db = SQLAlchemy(metadata=metadata)
migrate = Migrate()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked per connection."""
    if type(dbapi_connection).__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_class='config.Config'):
    """
    Application Factory Function
    """

    app = Flask(__name__, instance_relative_config=True)

    # Load configuration from the config.py file
    app.config.from_object(config_class)

    level = app.config.get('LOG_LEVEL', 'INFO')
    app.logger.setLevel(level)
    logging.getLogger('iamledger').setLevel(level)

    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        # Import models so SQLAlchemy knows about them
        from . import models  # noqa: F401

    # Register CLI commands
    from iamledger.commands.manage_db import init_db, seed_catalogue
    from iamledger.commands.provision import iam

    app.cli.add_command(init_db)
    app.cli.add_command(seed_catalogue)
    app.cli.add_command(iam)

    return app
