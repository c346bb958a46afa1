# file: models.py

import os

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint, create_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from .. import config

Base = declarative_base()


class TenantNetwork(Base):
    __tablename__ = "tenant_networks"
    __table_args__ = (UniqueConstraint("provider", "region", "name", name="uq_network_name"),)

    id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    region = Column(String, nullable=False)
    name = Column(String, nullable=False)
    cidr = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    subnets = relationship("Subnet", backref="network")


class FirewallPolicy(Base):
    __tablename__ = "firewall_policies"
    __table_args__ = (UniqueConstraint("provider", "region", "name", name="uq_policy_name"),)

    id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    region = Column(String, nullable=False)
    name = Column(String, nullable=False)
    network_id = Column(String, ForeignKey("tenant_networks.id"), nullable=True)
    rules = Column(JSON, default=list)  # ordered list of rule dicts
    created_at = Column(DateTime, server_default=func.now())


class Subnet(Base):
    __tablename__ = "subnets"
    __table_args__ = (UniqueConstraint("network_id", "name", name="uq_subnet_name"),)

    id = Column(String, primary_key=True)
    network_id = Column(String, ForeignKey("tenant_networks.id"), nullable=False)
    name = Column(String, nullable=False)
    cidr = Column(String, nullable=False)
    gateway = Column(String, nullable=False)
    status = Column(String, default="available")
    created_at = Column(DateTime, server_default=func.now())


class NetworkInterface(Base):
    __tablename__ = "network_interfaces"

    id = Column(String, primary_key=True)
    subnet_id = Column(String, ForeignKey("subnets.id"), nullable=False)
    name = Column(String, nullable=False)
    private_ip = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class FirewallBinding(Base):
    __tablename__ = "firewall_bindings"
    __table_args__ = (UniqueConstraint("policy_id", "target_id", name="uq_binding"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    policy_id = Column(String, ForeignKey("firewall_policies.id"), nullable=False)
    target_id = Column(String, nullable=False)
    target_kind = Column(String, nullable=False)  # subnet | interface
    created_at = Column(DateTime, server_default=func.now())


class Instance(Base):
    __tablename__ = "instances"

    id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    region = Column(String, nullable=False)
    name = Column(String, nullable=False)
    interface_id = Column(String, ForeignKey("network_interfaces.id"), nullable=False)
    vm_size = Column(String, nullable=False)
    os_type = Column(String, nullable=False)
    image_reference = Column(String)
    custom_script = Column(String)
    admin_username = Column(String)
    ssh_public_key = Column(String, nullable=True)  # Linux only; passwords are never stored
    status = Column(String, default="running")
    created_at = Column(DateTime, server_default=func.now())


# ============================================================================
# Database Configuration (SQLite for Persistence)
# ============================================================================

def create_session_factory(url: str = None):
    """Build an engine and session factory, creating tables if needed."""
    url = url or config.SQLALCHEMY_DATABASE_URL
    if url in ("sqlite://", "sqlite:///:memory:"):
        # A single shared connection keeps the in-memory database alive across sessions
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        if url.startswith("sqlite:///"):
            os.makedirs(os.path.dirname(os.path.abspath(url[len("sqlite:///"):])), exist_ok=True)
        engine = create_engine(url, connect_args={"check_same_thread": False} if url.startswith("sqlite") else {})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
