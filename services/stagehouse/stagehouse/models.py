"""
SQLAlchemy ORM models for the Stagehouse service.

Defines the database schema for the catalog, projects and the allocation ledger.
"""
from datetime import datetime
from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index,
    Integer, Numeric, String, Text,
)
from .database import Base


class User(Base):
    """
    User known to the service, used for role lookups.

    Attributes:
        id (int): Primary key
        subject (str): Subject claim issued by the identity provider (unique)
        email (str): User's email address
        name (str): Display name (optional)
        role (str): "admin" or "customer"
        created_at (datetime): When the user first synced
        updated_at (datetime): Last sync or role change
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    subject = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, nullable=False, default="")
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class InventoryItem(Base):
    """
    A physical staging item (furniture, decor) owned in one or more units.

    Attributes:
        id (int): Primary key, storage-assigned
        o_id (int): Stable public sequence number, also the catalog sort key
        active (bool): False once the item is archived
        count (int): Total units owned
        in_use (int): Units currently allocated to projects
        price (Decimal): Rental price per unit
        cost (Decimal): Purchase cost per unit (optional)
        image_path (str): Main image URL, with pixel width/height
        small_image_path (str): Thumbnail variant URL (optional)
    """
    __tablename__ = "inventory"
    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_inventory_count_non_negative"),
        CheckConstraint("in_use >= 0", name="ck_inventory_in_use_non_negative"),
        CheckConstraint("in_use <= count", name="ck_inventory_in_use_within_count"),
    )

    id = Column(Integer, primary_key=True, index=True)
    o_id = Column(Integer, unique=True, index=True, nullable=False)
    active = Column(Boolean, nullable=False, default=True, index=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="", index=True)
    vendor = Column(String, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    location = Column(String, nullable=False, default="")
    count = Column(Integer, nullable=False, default=0)
    in_use = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    cost = Column(Numeric(10, 2), nullable=True)
    real_width = Column(Float, nullable=False, default=0)
    real_height = Column(Float, nullable=False, default=0)
    real_depth = Column(Float, nullable=False, default=0)
    image_path = Column(String, nullable=False, default="")
    width = Column(Integer, nullable=False, default=0)
    height = Column(Integer, nullable=False, default=0)
    small_image_path = Column(String, nullable=True)
    small_width = Column(Integer, nullable=True)
    small_height = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ExtraImage(Base):
    """
    Secondary image of an inventory item.

    The item's main image is position 1 of its image collection; extra images
    follow in display_order.
    """
    __tablename__ = "extra_images"

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventory.id"), nullable=False, index=True)
    title = Column(String, nullable=True)
    image_path = Column(String, nullable=False)
    width = Column(Integer, nullable=False, default=0)
    height = Column(Integer, nullable=False, default=0)
    small_image_path = Column(String, nullable=True)
    small_width = Column(Integer, nullable=True)
    small_height = Column(Integer, nullable=True)
    display_order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Project(Base):
    """
    A staging project (one real-estate listing).

    Attributes:
        owner_id (str): Subject of the user who created the project
        status (str): draft, active, completed or cancelled
        highlighted (bool): Shown on the public portfolio
        inventory_assigned (bool): Set once inventory has ever been assigned; never reset
        display_order (int): Priority order in the admin project list
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)
    address = Column(String, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    revenue = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)
    highlighted = Column(Boolean, nullable=False, default=False, index=True)
    inventory_assigned = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProjectImage(Base):
    """
    Photo of a staged project. display_order is dense and zero-based per project.
    """
    __tablename__ = "project_images"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    owner_id = Column(String, nullable=False, index=True)
    image_path = Column(String, nullable=False)
    width = Column(Integer, nullable=False, default=0)
    height = Column(Integer, nullable=False, default=0)
    thumbnail_path = Column(String, nullable=True)
    thumbnail_width = Column(Integer, nullable=True)
    thumbnail_height = Column(Integer, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ProjectInventoryAssignment(Base):
    """
    Ledger row committing some units of one inventory item to one project.

    Rows are never edited except to stamp returned_at once. While returned_at
    is NULL the row holds `quantity` units of the item's in_use.

    Attributes:
        quantity (int): Units assigned (> 0)
        price_per_item (Decimal): Item price at assignment time
        assigned_at (datetime): When the units left the warehouse
        returned_at (datetime): When the units came back (NULL while out)
    """
    __tablename__ = "project_inventory"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_project_inventory_quantity_positive"),
        Index("ix_project_inventory_active", "project_id", "returned_at"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    inventory_id = Column(Integer, ForeignKey("inventory.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    price_per_item = Column(Numeric(10, 2), nullable=False, default=0)
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    returned_at = Column(DateTime, nullable=True)
