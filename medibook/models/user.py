"""User model definitions."""

from sqlalchemy import Column, Integer, String
from medibook.database import Base

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"
HOSPITAL_ADMIN_ROLE = "hospital_admin"


class User(Base):
    """Represents a platform user: patient, doctor or hospital staff."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # patient/doctor/hospital_admin
    hospital_id = Column(Integer, nullable=True)
    specialty = Column(String, nullable=True)
