"""
Database Schemas for TuCarrito (MongoDB collections)

Each record model maps to a collection in the local store:
- User -> "users"
- Vehicle -> "vehicles"
- TemporaryVehicle -> "temp_vehicles"
- PaymentTransaction -> "transactions"

Conversation and Message live in the messaging database ("conversations",
"messages"). The *In / *Update models are the inputs accepted by the
managers; they carry the caller-side validation.
"""
from datetime import datetime
from typing import Annotated, Optional, List, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

import settings
from images import validate_image
from states import (
    Role, UserType, ValidationStatus, VehicleStatus, SaleStatus, TemporaryStatus,
    TransactionStatus, Transmission, FuelType, PaymentMethod,
)


class Record(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


# ------------------------- Users -------------------------

class User(Record):
    id: str
    email: str
    passwordHash: str
    fullName: str
    phone: str
    idNumber: str
    userType: UserType
    role: Role = Role.USER
    validationStatus: ValidationStatus = ValidationStatus.PENDING
    isApproved: bool = False
    approvedBy: Optional[str] = None
    approvedAt: Optional[str] = None
    createdAt: str

    @model_validator(mode="after")
    def admins_are_always_approved(self):
        if self.role == Role.ADMIN:
            self.isApproved = True
            self.validationStatus = ValidationStatus.APPROVED.value
        return self

    def public(self) -> dict:
        return self.model_dump(exclude={"passwordHash"})


# ------------------------- Vehicles -------------------------

def _check_images(images: List[str]) -> List[str]:
    if not images:
        raise ValueError("Debes subir al menos una imagen del vehículo")
    if len(images) > settings.MAX_VEHICLE_IMAGES:
        raise ValueError(f"Máximo {settings.MAX_VEHICLE_IMAGES} imágenes por vehículo")
    for img in images:
        error = validate_image(img)
        if error:
            raise ValueError(error)
    return images


def _check_document(value: str) -> str:
    error = validate_image(value)
    if error:
        raise ValueError(error)
    return value


def _check_year(year: int) -> int:
    if not (1900 <= year <= datetime.now().year + 1):
        raise ValueError("Año del vehículo fuera de rango")
    return year


Images = Annotated[List[str], AfterValidator(_check_images)]
Year = Annotated[int, AfterValidator(_check_year)]
DocumentImage = Annotated[str, AfterValidator(_check_document)]


class VehicleFields(Record):
    brand: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    year: int
    price: float = Field(..., gt=0)
    description: str = ""
    mileage: int = Field(0, ge=0)
    transmission: Transmission
    fuelType: FuelType
    images: List[str] = Field(default_factory=list)


class Vehicle(VehicleFields):
    id: str
    userId: str
    userEmail: str
    userName: str
    userPhone: str
    licensePlate: Optional[str] = None
    ownershipCard: Optional[str] = None
    soat: Optional[str] = None
    technicalReview: Optional[str] = None
    status: VehicleStatus = VehicleStatus.ACTIVE
    saleStatus: SaleStatus = SaleStatus.DRAFT
    validationMessage: Optional[str] = None
    validationDate: Optional[str] = None
    createdAt: str
    updatedAt: str

    @property
    def in_catalog(self) -> bool:
        return self.status == VehicleStatus.ACTIVE and self.saleStatus == SaleStatus.FOR_SALE


class VehicleIn(VehicleFields):
    year: Year
    images: Images
    licensePlate: Optional[str] = None
    ownershipCard: Optional[DocumentImage] = None
    soat: Optional[DocumentImage] = None
    technicalReview: Optional[DocumentImage] = None


# optional on Vehicle, so an explicit null removes them
CLEARABLE_VEHICLE_FIELDS = {"licensePlate", "ownershipCard", "soat", "technicalReview"}


class VehicleUpdate(Record):
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[Year] = None
    price: Optional[float] = Field(None, gt=0)
    description: Optional[str] = None
    mileage: Optional[int] = Field(None, ge=0)
    transmission: Optional[Transmission] = None
    fuelType: Optional[FuelType] = None
    images: Optional[Images] = None
    licensePlate: Optional[str] = None
    ownershipCard: Optional[DocumentImage] = None
    soat: Optional[DocumentImage] = None
    technicalReview: Optional[DocumentImage] = None

    def changes(self) -> dict:
        data = self.model_dump(mode="json", exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k in CLEARABLE_VEHICLE_FIELDS}


class TemporaryVehicle(VehicleFields):
    id: str
    sessionId: str
    contactName: str
    contactEmail: str
    contactPhone: str
    status: TemporaryStatus = TemporaryStatus.TEMPORARY
    createdAt: str
    updatedAt: str


class TemporaryVehicleIn(VehicleFields):
    year: Year
    images: Images
    contactName: str = Field(..., min_length=1)
    contactEmail: str = Field(..., min_length=3)
    contactPhone: str = Field(..., min_length=1)


class TemporaryVehicleUpdate(Record):
    contactName: Optional[str] = None
    contactEmail: Optional[str] = None
    contactPhone: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    year: Optional[Year] = None
    price: Optional[float] = Field(None, gt=0)
    description: Optional[str] = None
    mileage: Optional[int] = Field(None, ge=0)
    transmission: Optional[Transmission] = None
    fuelType: Optional[FuelType] = None
    images: Optional[Images] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class SearchFilters(Record):
    brand: Optional[str] = None
    model: Optional[str] = None
    minYear: Optional[Year] = None
    maxYear: Optional[Year] = None
    minPrice: Optional[float] = None
    maxPrice: Optional[float] = None
    transmission: Optional[Transmission] = None
    fuelType: Optional[FuelType] = None

    @field_validator("minPrice", "maxPrice")
    @classmethod
    def non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("El precio no puede ser negativo")
        return v

    @model_validator(mode="after")
    def ranges_are_ordered(self):
        if self.minYear is not None and self.maxYear is not None and self.minYear > self.maxYear:
            raise ValueError("El año mínimo no puede ser mayor que el año máximo")
        if self.minPrice is not None and self.maxPrice is not None and self.minPrice > self.maxPrice:
            raise ValueError("El precio mínimo no puede ser mayor que el precio máximo")
        return self


# ------------------------- Payments -------------------------

class GatewayResponse(Record):
    success: bool
    message: str
    authorizationCode: Optional[str] = None
    errorCode: Optional[str] = None


class PaymentTransaction(Record):
    id: str
    vehicleId: str
    vehicleBrand: str
    vehicleModel: str
    vehicleYear: int
    vehiclePrice: float
    buyerId: str
    buyerName: str
    buyerEmail: str
    sellerId: str
    sellerName: str
    sellerEmail: str
    commissionRate: float
    commissionAmount: float
    totalAmount: float
    status: TransactionStatus = TransactionStatus.PENDING
    paymentMethod: Optional[PaymentMethod] = None
    transactionReference: Optional[str] = None
    paymentGatewayResponse: Optional[GatewayResponse] = None
    rejectedReason: Optional[str] = None
    createdAt: str
    completedAt: Optional[str] = None
    cancelledAt: Optional[str] = None


# ------------------------- Background checks -------------------------

class BackgroundVehicleInfo(Record):
    brand: str
    model: str
    year: int
    vin: str


class Ownership(Record):
    currentOwner: str
    ownershipDate: str
    previousOwners: int


class AccidentDetail(Record):
    date: str
    severity: str
    description: str


class Accidents(Record):
    hasAccidents: bool
    totalAccidents: int
    details: List[AccidentDetail] = []


class TechnicalReviewReport(Record):
    status: str
    lastReviewDate: str
    nextReviewDate: str
    observations: str


class TheftDetail(Record):
    reportDate: str
    status: str
    description: str


class TheftReports(Record):
    hasReports: bool
    totalReports: int
    details: List[TheftDetail] = []


class Fines(Record):
    hasFines: bool
    totalFines: int
    totalAmount: int


class VehicleBackground(Record):
    licensePlate: str
    found: bool
    vehicleInfo: BackgroundVehicleInfo
    ownership: Ownership
    accidents: Accidents
    technicalReview: TechnicalReviewReport
    theftReports: TheftReports
    fines: Fines
    lastUpdated: str


# ------------------------- Messaging -------------------------

class VehicleSnapshot(Record):
    brand: str
    model: str
    year: int
    price: float


class Conversation(Record):
    id: str
    participant1Id: str
    participant1Name: str
    participant2Id: str
    participant2Name: str
    vehicleId: Optional[str] = None
    vehicleInfo: Optional[VehicleSnapshot] = None
    lastMessageAt: str
    lastMessagePreview: Optional[str] = None
    unreadCount: Optional[int] = None
    createdAt: str


class Message(Record):
    id: str
    conversationId: str
    senderId: str
    senderName: str
    content: str
    sentAt: str
    isRead: bool = False
    readAt: Optional[str] = None


def dump(value: Any):
    """JSON-ready form of a record, a list of records, or anything else."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [dump(v) for v in value]
    return value
