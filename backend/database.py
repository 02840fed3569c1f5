from sqlalchemy import create_engine, event, Column, Integer, String, DateTime, Date, Boolean, Text, JSON, Float, ForeignKey, Enum
from sqlalchemy.engine import Engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from datetime import datetime
import sqlite3
import uuid

from config import DATABASE_URL
from stage_normalizer import DementiaStage

# Create engine with appropriate connection args
connect_args = {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    visits = relationship("Visit", back_populates="creator")


class Profile(Base):
    """Clinician profile, one per account, created together with the account."""
    __tablename__ = "profiles"

    id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    full_name = Column(String)
    role = Column(String, default="doctor", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="profile")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False, index=True)
    date_of_birth = Column(Date, nullable=False)
    medical_record_number = Column(Text, unique=True)  # Optional, unique when present
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    visits = relationship(
        "Visit",
        back_populates="patient",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Visit.created_at",
    )


class Visit(Base):
    """One MRI upload and its classification. Rows are never updated after insert."""
    __tablename__ = "visits"

    id = Column(String(36), primary_key=True, default=_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Classifier payload exactly as received
    raw_report = Column(JSON, nullable=False)

    # Normalized result; stage is NULL for non-MRI uploads and unmapped labels
    predicted_class = Column(
        Enum(
            DementiaStage,
            name="dementia_stage",
            values_callable=lambda stages: [s.value for s in stages],
            validate_strings=True,
        ),
        nullable=True,
    )
    confidence = Column(Float)  # [0, 1], 4 decimal places
    insights = Column(Text)
    needs_review = Column(Boolean, default=False, nullable=False)

    # Stored image references
    image_url = Column(Text, index=True)
    annotated_image_url = Column(Text)

    created_by = Column(Integer, ForeignKey("users.id"))

    patient = relationship("Patient", back_populates="visits")
    creator = relationship("User", back_populates="visits")


def create_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
