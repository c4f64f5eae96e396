"""
Root pytest configuration for the Django project.

Sets the environment the settings module reads before Django starts.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Celery tasks queued from on_commit callbacks run in-process
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "True")
