"""
Root pytest configuration.

Sets the environment the settings module needs before pytest-django loads
it: a throwaway SQLite database when DATABASE_URL is not provided, eager
Celery, and a test secret. Django setup and project-wide fixtures live in
app/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite:///test_settlement.sqlite3")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "True")
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
os.environ.setdefault("SETTLEMENT_GATEWAY_KEY_SECRET", "test_gateway_key_secret")
os.environ.setdefault("SETTLEMENT_GATEWAY_WEBHOOK_SECRET", "test_gateway_webhook_secret")
os.environ.setdefault("ENV_FILE", "/nonexistent/.env.test")
