from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Import models so Base.metadata is complete for create_all.
from mindhit.db import models as _models  # noqa: E402,F401
