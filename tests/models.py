"""Shared source and destination types used across the test suite.

Plain dataclasses cover most scenarios; the SQLAlchemy models at the bottom
mirror how persistence records are mapped to transfer objects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Set, Tuple

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship


class Status(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Priority(Enum):
    LOW = 1
    HIGH = 2


# Flat records


@dataclass
class SimpleSource:
    id: int = 0
    name: Optional[str] = None
    created_date: Optional[datetime] = None
    is_active: bool = False


@dataclass
class SimpleDestination:
    id: int = 0
    name: Optional[str] = None
    created_date: Optional[datetime] = None
    is_active: bool = False


@dataclass
class RenamedDestination:
    identifier: int = 0
    full_name: Optional[str] = None
    created: Optional[datetime] = None
    status: bool = False


@dataclass
class ShoutingDestination:
    ID: int = 0
    NAME: Optional[str] = None


@dataclass
class TextRecord:
    id: str = ""
    amount: str = ""
    active: str = ""
    status: str = ""


@dataclass
class TypedRecord:
    id: int = 0
    amount: Decimal = Decimal("0")
    active: bool = False
    status: Optional[Status] = None


# Nested graphs


@dataclass
class Address:
    street: Optional[str] = None
    city: Optional[str] = None


@dataclass
class AddressDto:
    street: Optional[str] = None
    city: Optional[str] = None


@dataclass
class AddressLabel:
    id: int = 0
    address: str = "unchanged"


@dataclass
class Customer:
    id: int = 0
    name: Optional[str] = None
    address: Optional[Address] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class CustomerDto:
    id: int = 0
    name: Optional[str] = None
    address: Optional[AddressDto] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class Node:
    name: Optional[str] = None
    child: Optional["Node"] = None


@dataclass
class NodeDto:
    name: Optional[str] = None
    child: Optional["NodeDto"] = None


# Collections


@dataclass
class OrderLine:
    sku: Optional[str] = None
    quantity: int = 0


@dataclass
class OrderLineDto:
    sku: Optional[str] = None
    quantity: int = 0


@dataclass
class Order:
    id: int = 0
    lines: List[Optional[OrderLine]] = field(default_factory=list)
    quantities: Dict[str, str] = field(default_factory=dict)
    codes: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)


@dataclass
class OrderDto:
    id: int = 0
    lines: List[Optional[OrderLineDto]] = field(default_factory=list)
    quantities: Dict[str, int] = field(default_factory=dict)
    codes: Tuple[str, ...] = ()
    labels: Set[str] = field(default_factory=set)


@dataclass
class StreamHolder:
    id: int = 0
    values: Optional[Sequence[int]] = None
    stream: Optional[Iterator[int]] = None


@dataclass
class ValuesSource:
    id: int = 0
    values: List[int] = field(default_factory=list)
    stream: List[int] = field(default_factory=list)


# Polymorphism


@dataclass
class BaseItem:
    id: int = 0


@dataclass
class DerivedItem(BaseItem):
    extra: Optional[str] = None


@dataclass
class BaseItemDto:
    id: int = 0


@dataclass
class DerivedItemDto(BaseItemDto):
    extra: Optional[str] = None


@dataclass
class Animal:
    id: int = 0


@dataclass
class Dog(Animal):
    breed: Optional[str] = None


@dataclass
class Cat(Animal):
    lives: int = 9


@dataclass
class AnimalDto:
    id: int = 0


@dataclass
class DogDto(AnimalDto):
    breed: Optional[str] = None


@dataclass
class CatDto(AnimalDto):
    lives: int = 0


@dataclass
class Shelter:
    name: Optional[str] = None
    animals: List[Animal] = field(default_factory=list)
    featured: Optional[Animal] = None


@dataclass
class ShelterDto:
    name: Optional[str] = None
    animals: List[AnimalDto] = field(default_factory=list)
    featured: Optional[AnimalDto] = None


@dataclass
class PetOwner:
    name: Optional[str] = None
    pet: Any = None


@dataclass
class PetOwnerDto:
    name: Optional[str] = None
    pet: Optional[AnimalDto] = None


# Construction paths


@dataclass(frozen=True)
class Point:
    x: int
    y: int


class Money(NamedTuple):
    amount: Decimal
    currency: str


class PlainUser:
    def __init__(self):
        self.user_name = None
        self.email = None
        self._secret = "hidden"


class AnnotatedUser:
    user_name: Optional[str] = None
    email: Optional[str] = None


class PropertyUser:
    def __init__(self, first: str = "", last: str = ""):
        self.first = first
        self.last = last

    @property
    def full_name(self) -> str:
        return f"{self.first} {self.last}"


@dataclass
class FullNameDto:
    full_name: Optional[str] = None


class AbstractShape(ABC):
    name: Optional[str] = None

    @abstractmethod
    def area(self) -> float:
        ...


class Empty:
    pass


# SQLAlchemy models

Base = declarative_base()


class CustomerRecord(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(200))
    created_at = Column(DateTime)

    orders = relationship("OrderRecord", back_populates="customer")


class OrderRecord(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"))
    total = Column(Float)

    customer = relationship("CustomerRecord", back_populates="orders")


@dataclass
class CustomerSummary:
    id: int = 0
    name: Optional[str] = None
    email_address: Optional[str] = None
    order_count: int = 0


@dataclass
class OrderSummary:
    id: int = 0
    total: Optional[float] = None


@dataclass
class CustomerDetail:
    id: int = 0
    name: Optional[str] = None
    orders: List[OrderSummary] = field(default_factory=list)
