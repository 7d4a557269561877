"""
Database Schemas

Each Pydantic model represents a MongoDB collection. The model name is
converted to lowercase for the collection name:
- Package -> "package" collection
- Quote -> "quote" collection
- Customer -> "customer" collection
- Message -> "message" collection

created_at / updated_at are stamped by database.create_document.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Package(BaseModel):
    """
    Rental packages shown on the public site
    Collection name: "package"
    """
    name: str = Field(..., min_length=2)
    description: str = ""
    category: str = "other"  # private, wedding, corporate, other
    base_price: float = Field(..., ge=0)
    price_unit: str = "ZAR"
    features: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    is_active: bool = True
    is_popular: bool = False


class QuoteItem(BaseModel):
    name: str
    quantity: int = Field(1, gt=0)
    unit_price: float = Field(0, ge=0)


class Quote(BaseModel):
    """
    Quote requests submitted from the website
    Collection name: "quote"
    """
    customer_id: str
    event_type: str
    event_date: Optional[str] = None  # ISO date (YYYY-MM-DD)
    location: Optional[str] = None
    guest_count: Optional[int] = Field(None, ge=0)
    package_id: Optional[str] = None
    items: List[QuoteItem] = Field(default_factory=list)
    notes: Optional[str] = None
    total: float = 0
    status: Literal['pending', 'approved', 'rejected'] = 'pending'


class Customer(BaseModel):
    """
    People and organisations who asked for a quote
    Collection name: "customer"
    """
    name: str
    email: str  # stored lowercased
    phone: Optional[str] = None
    status: Literal['quotation', 'confirmed', 'cancelled'] = 'quotation'


class Message(BaseModel):
    """
    Contact form submissions
    Collection name: "message"
    """
    name: str
    email: str
    phone: Optional[str] = None
    subject: str
    message: str
    is_read: bool = False
    source: Literal['contact', 'quote', 'other'] = 'contact'
