"""
Database base configuration
"""
from sqlalchemy.orm import declarative_base

# Create declarative base for SQLAlchemy models
Base = declarative_base()


# Import all models here to ensure they are registered with SQLAlchemy
def import_models():
    """Import all models to register them with SQLAlchemy"""
    from storefront.models import checkout_session  # noqa: F401
    from storefront.models import order  # noqa: F401
    from storefront.models import payment_gateway  # noqa: F401
    from storefront.models import product  # noqa: F401
    from storefront.models import setting  # noqa: F401
    from storefront.models import webhook_event  # noqa: F401
