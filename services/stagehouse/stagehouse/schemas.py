"""
Pydantic schemas for request/response validation in the Stagehouse service.

These schemas define the structure of data for API requests and responses.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

ProjectStatus = Literal["draft", "active", "completed", "cancelled"]
Role = Literal["admin", "customer"]
Direction = Literal["up", "down"]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class User(BaseModel):
    """Schema for user responses."""
    id: int
    subject: str
    email: str
    name: Optional[str] = None
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


class RoleUpdate(BaseModel):
    """Schema for changing a user's role."""
    role: Role


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class InventoryItemBase(BaseModel):
    """Base schema with common inventory item attributes."""
    name: str = Field(..., min_length=1)
    category: str = ""
    vendor: str = ""
    description: str = ""
    location: str = ""
    count: int = Field(0, ge=0, description="Total units owned")
    price: Decimal = Field(Decimal("0"), ge=0, description="Rental price per unit")
    cost: Optional[Decimal] = Field(default=None, ge=0)
    real_width: float = 0
    real_height: float = 0
    real_depth: float = 0
    image_path: str = ""
    width: int = 0
    height: int = 0
    small_image_path: Optional[str] = None
    small_width: Optional[int] = None
    small_height: Optional[int] = None
    active: bool = True


class InventoryItemCreate(InventoryItemBase):
    """Schema for creating a new inventory item."""
    o_id: Optional[int] = Field(default=None, ge=1, description="Sequence number; assigned automatically when omitted")


class InventoryItemUpdate(BaseModel):
    """Schema for updating an inventory item. All fields are optional; in_use and o_id are not editable."""
    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    vendor: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    count: Optional[int] = Field(default=None, ge=0)
    price: Optional[Decimal] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    real_width: Optional[float] = None
    real_height: Optional[float] = None
    real_depth: Optional[float] = None
    image_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    small_image_path: Optional[str] = None
    small_width: Optional[int] = None
    small_height: Optional[int] = None
    active: Optional[bool] = None


class InventoryItem(InventoryItemBase):
    """
    Schema for inventory item responses, includes all database fields.

    Attributes:
        id (int): Storage identifier
        o_id (int): Public sequence number
        in_use (int): Units currently assigned to projects
        created_at (datetime): When the item was created
        updated_at (datetime): Last modification
    """
    id: int
    o_id: int
    in_use: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ExtraImageCreate(BaseModel):
    """Schema for attaching an extra image to an inventory item."""
    title: Optional[str] = None
    image_path: str = Field(..., min_length=1)
    width: int = 0
    height: int = 0
    small_image_path: Optional[str] = None
    small_width: Optional[int] = None
    small_height: Optional[int] = None


class ExtraImage(ExtraImageCreate):
    id: int
    inventory_id: int
    display_order: int
    created_at: datetime

    class Config:
        from_attributes = True


class InventoryItemDetail(InventoryItem):
    """Inventory item with its extra images in display order."""
    extra_images: List[ExtraImage] = Field(default_factory=list)


class Availability(BaseModel):
    total: int
    in_use: int
    available: int


class AdjacentItems(BaseModel):
    """Neighbors of an item when browsing the catalog (no wraparound)."""
    next_o_id: Optional[int] = None
    prev_o_id: Optional[int] = None


class OrderKeySwap(BaseModel):
    """Explicit swap of two catalog order keys."""
    id_a: int
    key_a: int = Field(..., ge=1)
    id_b: int
    key_b: int = Field(..., ge=1)


class MoveRequest(BaseModel):
    direction: Direction


class ImageSwap(BaseModel):
    """1-based positions in [main image, *extra images]."""
    position1: int = Field(..., ge=1)
    position2: int = Field(..., ge=1)


class ImageMove(BaseModel):
    position: int = Field(..., ge=1)
    direction: Direction


class LedgerDrift(BaseModel):
    inventory_id: int
    o_id: int
    name: str
    in_use: int
    ledger_in_use: int


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectBase(BaseModel):
    """Base schema with common project attributes."""
    name: str = Field(..., min_length=1)
    status: ProjectStatus = "draft"
    address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    revenue: Optional[Decimal] = None
    notes: Optional[str] = None


class ProjectCreate(ProjectBase):
    """Schema for creating a new project."""
    pass


class ProjectUpdate(BaseModel):
    """Schema for updating an existing project. All fields are optional."""
    name: Optional[str] = Field(default=None, min_length=1)
    status: Optional[ProjectStatus] = None
    address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    revenue: Optional[Decimal] = None
    notes: Optional[str] = None
    highlighted: Optional[bool] = None


class Project(ProjectBase):
    """
    Schema for project responses.

    Attributes:
        owner_id (str): Subject of the project owner
        highlighted (bool): Shown on the public portfolio
        inventory_assigned (bool): Inventory has been assigned at least once
        display_order (int): Priority order
    """
    id: int
    owner_id: str
    highlighted: bool
    inventory_assigned: bool
    display_order: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectMove(BaseModel):
    direction: Literal["up", "down", "first", "last"]


class ProjectImageCreate(BaseModel):
    image_path: str = Field(..., min_length=1)
    width: int = 0
    height: int = 0
    thumbnail_path: Optional[str] = None
    thumbnail_width: Optional[int] = None
    thumbnail_height: Optional[int] = None


class ProjectImage(ProjectImageCreate):
    id: int
    project_id: int
    owner_id: str
    display_order: int
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectImageOrder(BaseModel):
    """Full new order of a project's images."""
    image_ids: List[int]


class AssignmentCreate(BaseModel):
    """Schema for assigning inventory to a project."""
    inventory_id: int
    quantity: int = Field(..., gt=0, description="Units to assign")


class Assignment(BaseModel):
    """
    Schema for ledger rows.

    Attributes:
        price_per_item (Decimal): Item price snapshotted at assignment time
        returned_at (datetime): Set once the units came back
    """
    id: int
    project_id: int
    inventory_id: int
    quantity: int
    price_per_item: Decimal
    assigned_at: datetime
    returned_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssignmentWithItem(Assignment):
    inventory: Optional[InventoryItem] = None


class ProjectInventory(BaseModel):
    assignments: List[AssignmentWithItem]
    rental_total: Decimal


class ProjectDetail(Project):
    images: List[ProjectImage] = Field(default_factory=list)
    assigned_inventory: List[AssignmentWithItem] = Field(default_factory=list)


class PortfolioProject(Project):
    images: List[ProjectImage] = Field(default_factory=list)
