"""SQLAlchemy models backing the SQL registry store."""

from sqlalchemy import VARCHAR, BigInteger, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chat_bridge.db.session import Base


class RegistryEntry(Base):
    """One registered (installation, channel) endpoint."""

    __tablename__ = "registry_entries"
    __table_args__ = (
        UniqueConstraint("installation_id", "channel_id", name="uq_registry_endpoint"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    installation_id: Mapped[str] = mapped_column(VARCHAR(64), nullable=False)
    channel_id: Mapped[str] = mapped_column(VARCHAR(64), nullable=False)


class InstallationRoute(Base):
    """Delivery URL announced by an installation when it joined."""

    __tablename__ = "installation_routes"

    installation_id: Mapped[str] = mapped_column(VARCHAR(64), primary_key=True)
    deliver_url: Mapped[str] = mapped_column(Text, nullable=False)
