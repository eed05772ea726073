from .models import Base
from .session import engine

from app.utils.logging import get_logger

logger = get_logger()


def create_tables():
    """Create the users, groups, memberships and push subscription tables."""
    Base.metadata.create_all(engine)
    logger.info(f"Created tables: {', '.join(Base.metadata.tables)}")


def drop_tables():
    Base.metadata.drop_all(engine)
    logger.info("Dropped notification tables")


if __name__ == "__main__":
    # Local bootstrap: python -m app.db.db
    drop_tables()
    create_tables()
