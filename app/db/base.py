from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Note: table modules import this Base. Do not import them here to avoid circular imports.
