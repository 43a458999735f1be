"""Events package.

Keep package import side-effect free so tooling (e.g. Alembic model import)
does not pull in the broker.
"""

__all__: list[str] = []
