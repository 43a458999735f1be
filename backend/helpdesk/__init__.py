# backend/helpdesk/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in helpdesk/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models          # users (identity collaborator)
from .apps.content import models as content_models            # content items (library collaborator)
from .apps.training import models as training_models          # definitions, steps, assignments, events

__all__ = [
    "accounts_models",
    "content_models",
    "training_models",
]
