from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from fleetdispatch.database import Base


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # ADMIN | DRIVER
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # Stored as entered; credentials are not hashed in this deployment.
    password: Mapped[str] = mapped_column(String(255), nullable=False)
