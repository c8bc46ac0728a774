"""
Database connection and setup
PostgreSQL in production; SQLite is accepted for local runs and tests
"""
import os
from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from dotenv import load_dotenv

# Load environment variables from project root
env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required for database connection")

IS_SQLITE = DATABASE_URL.startswith("sqlite")

# Create SQLAlchemy engine
if IS_SQLITE:
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
        echo=False
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
        echo=False  # Set to True for SQL query logging in development
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()

def get_db():
    """
    Dependency for FastAPI routes to get database session
    Usage:
        @router.get("/items")
        def list_items(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    """
    Initialize database tables
    Call this on application startup
    """
    # Import models so every table is registered on Base.metadata
    import models.user  # noqa: F401
    import models.property  # noqa: F401
    import models.payments  # noqa: F401
    import models.ownership  # noqa: F401
    import models.affiliates  # noqa: F401

    Base.metadata.create_all(bind=engine)
    if IS_SQLITE:
        return
    # Run idempotent DDL inside a transaction so changes are committed
    try:
        with engine.begin() as conn:
            # Ensure the RMA signing columns exist (added after first release)
            for column, ddl in (
                ("rma_signed_at", "TIMESTAMPTZ"),
                ("is_rma_signed", "BOOLEAN NOT NULL DEFAULT FALSE"),
                ("rma_signer_name", "VARCHAR(255)"),
            ):
                chk = conn.execute(text(f"SELECT 1 FROM information_schema.columns WHERE table_name='ownerships' AND column_name='{column}'"))
                if not chk.first():
                    conn.execute(text(f"ALTER TABLE public.ownerships ADD COLUMN IF NOT EXISTS {column} {ddl}"))
    except Exception:
        # Swallow to avoid startup crash in constrained envs; logs handled by callers
        pass
