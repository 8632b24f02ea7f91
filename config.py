import os
from dotenv import load_dotenv

# Load environment variables from .env file
BASE_DIR = os.path.abspath(os.path.dirname(__file__))
dotenv_path = os.path.join(BASE_DIR, '.env')

# Load the .env file from that specific path
load_dotenv(dotenv_path=dotenv_path)


def _split_roles(value):
    return frozenset(r.strip() for r in value.split(',') if r.strip())


class Config:
    """Base configuration class."""

    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL') or 'sqlite:///' + os.path.join(BASE_DIR, 'iamledger.db')

    # Flask-SQLAlchemy settings
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_recycle': 280}
    SQLALCHEMY_TRACK_MODIFICATIONS = False  # Good practice

    # Roles a provisioning request may assign or revoke
    IAM_ALLOWED_ROLES = _split_roles(
        os.getenv('IAM_ALLOWED_ROLES', 'IAM_ADMIN,AUDITOR,DEVELOPER,VIEWER')
    )
    IAM_MAX_LOGIN_ATTEMPTS = int(os.getenv('IAM_MAX_LOGIN_ATTEMPTS', 5))
    IAM_SYSTEM_ACTOR = os.getenv('IAM_SYSTEM_ACTOR', 'system')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
