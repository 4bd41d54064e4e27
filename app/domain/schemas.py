# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------- auth ----------

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=72)
    first_name: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=_EMAIL_PATTERN)
    password: str = Field(..., min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    user_id: int
    email: str


# ---------- profile / onboarding ----------

class ProfileOut(ORMModel):
    id: int
    email: str
    first_name: Optional[str] = None
    role: Optional[str] = None
    custom_role: Optional[str] = None
    account_type: str
    expecting_status: Optional[str] = None
    has_kids: bool = False
    kids_count: int = 0
    parenting_styles: List[str] = Field(default_factory=list)
    topics_of_interest: List[str] = Field(default_factory=list)
    personal_context: Optional[str] = None
    profile_image_url: Optional[str] = None
    onboarded: bool = False

    expert_bio: Optional[str] = None
    expert_specialties: List[str] = Field(default_factory=list)
    expert_credentials: List[str] = Field(default_factory=list)
    expert_education: List[str] = Field(default_factory=list)
    expert_languages: List[str] = Field(default_factory=list)
    expert_experience_years: Optional[int] = None
    expert_consultation_rate: Optional[float] = None
    expert_consultation_types: List[str] = Field(default_factory=list)
    expert_office_location: Optional[str] = None
    expert_rating: Optional[float] = None
    expert_total_reviews: Optional[int] = None
    expert_verified: bool = False
    expert_profile_visibility: bool = True
    expert_accepts_new_clients: bool = True
    expert_availability_status: Optional[str] = None
    expert_response_time_hours: Optional[int] = None
    expert_timezone: Optional[str] = None
    expert_website_url: Optional[str] = None
    expert_social_links: Dict[str, Any] = Field(default_factory=dict)

    created_at: int


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    role: Optional[str] = Field(None, pattern=r"^(mom|dad|caregiver|other)$")
    custom_role: Optional[str] = Field(None, max_length=100)
    expecting_status: Optional[str] = Field(None, pattern=r"^(yes|no|trying)$")
    has_kids: Optional[bool] = None
    kids_count: Optional[int] = Field(None, ge=0, le=20)
    parenting_styles: Optional[List[str]] = None
    topics_of_interest: Optional[List[str]] = None
    personal_context: Optional[str] = None


class ExpertProfileUpdateRequest(BaseModel):
    expert_bio: Optional[str] = None
    expert_specialties: Optional[List[str]] = None
    expert_credentials: Optional[List[str]] = None
    expert_education: Optional[List[str]] = None
    expert_languages: Optional[List[str]] = None
    expert_experience_years: Optional[int] = Field(None, ge=0, le=80)
    expert_consultation_rate: Optional[float] = Field(None, ge=0)
    expert_consultation_types: Optional[List[str]] = None
    expert_office_location: Optional[str] = None
    expert_accepts_new_clients: Optional[bool] = None
    expert_profile_visibility: Optional[bool] = None
    expert_availability_status: Optional[str] = None
    expert_response_time_hours: Optional[int] = Field(None, ge=0)
    expert_timezone: Optional[str] = None
    expert_website_url: Optional[str] = None
    expert_social_links: Optional[Dict[str, Any]] = None


class OnboardingStepRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)


class OnboardingProgress(BaseModel):
    completed_steps: List[str]
    next_step: Optional[str] = None
    onboarded: bool


# ---------- kids ----------

class KidIn(BaseModel):
    name: str = ""
    birthdate: str = ""


class SaveKidsRequest(BaseModel):
    kids: List[KidIn]


class ExpectingBabyRequest(BaseModel):
    due_date: str
    expected_name: Optional[str] = Field(None, max_length=100)


class KidOut(BaseModel):
    id: int
    first_name: str
    birth_date: Optional[dt.date] = None
    age: Optional[int] = None
    age_display: Optional[str] = None
    is_expecting: bool = False
    due_date: Optional[dt.date] = None
    due_date_display: Optional[str] = None
    expected_name: Optional[str] = None


class SaveKidsResponse(BaseModel):
    changed: bool
    kids: List[KidOut]


# ---------- chat ----------

class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=4000)
    session_id: Optional[int] = None
    child_id: Optional[int] = None


class ExpertSuggestion(BaseModel):
    id: int
    name: str
    specialty: str
    bio: str
    profile_image_url: Optional[str] = None
    rating: float = 5.0
    total_reviews: int = 0
    consultation_fee: int
    experience_years: Optional[int] = None
    location: Optional[str] = None
    similarity_score: Optional[float] = None


class ChatMessageResponse(BaseModel):
    response: str
    session_id: int
    expert_suggestions: List[ExpertSuggestion] = Field(default_factory=list)


class ChatSessionOut(ORMModel):
    id: int
    child_id: Optional[int] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    is_active: bool
    last_message_at: Optional[int] = None
    created_at: int


class MessageOut(BaseModel):
    id: int
    role: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: int


class ChildContext(BaseModel):
    id: int
    first_name: str
    birth_date: Optional[dt.date] = None
    age_in_months: Optional[int] = None


class ChatContextOut(BaseModel):
    child_profile: Optional[ChildContext] = None
    session_id: Optional[int] = None
    session_summary: str = ""
    recent_messages: List[MessageOut] = Field(default_factory=list)


class SessionSummaryOut(BaseModel):
    summary: str
    messages_processed: int


# ---------- experts ----------

class ExpertOut(ORMModel):
    id: int
    first_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    expert_bio: Optional[str] = None
    expert_specialties: List[str] = Field(default_factory=list)
    expert_credentials: List[str] = Field(default_factory=list)
    expert_languages: List[str] = Field(default_factory=list)
    expert_experience_years: Optional[int] = None
    expert_consultation_rate: Optional[float] = None
    expert_office_location: Optional[str] = None
    expert_rating: Optional[float] = None
    expert_total_reviews: Optional[int] = None
    expert_accepts_new_clients: bool = True
    expert_availability_status: Optional[str] = None


class EmbeddingGenerationResult(BaseModel):
    total: int
    generated: int
    skipped: int
    failed: int


# ---------- products ----------

class ExpertBrief(ORMModel):
    id: int
    first_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class CategoryOut(ORMModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None


class ReviewOut(ORMModel):
    id: int
    user_id: int
    rating: int
    review_text: Optional[str] = None
    is_verified_purchase: bool = True
    created_at: int


class ProductFileOut(BaseModel):
    id: int
    file_url: str
    url: str
    file_name: str
    file_type: str
    file_size_mb: float
    mime_type: Optional[str] = None
    display_title: Optional[str] = None
    description: Optional[str] = None
    is_primary: bool = False
    sort_order: int = 0
    duration_minutes: Optional[int] = None
    page_count: Optional[int] = None


class ProductOut(BaseModel):
    id: int
    expert_id: int
    title: str
    description: Optional[str] = None
    price: float
    product_type: str
    content_type: str
    file_url: Optional[str] = None
    primary_file_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    file_size_mb: Optional[float] = None
    duration_minutes: Optional[int] = None
    page_count: Optional[int] = None
    has_multiple_files: bool = False
    total_files_count: int = 0
    is_active: bool
    view_count: int = 0
    created_at: int

    expert: Optional[ExpertBrief] = None
    categories: List[CategoryOut] = Field(default_factory=list)
    average_rating: Optional[float] = None
    total_reviews: int = 0
    files: List[ProductFileOut] = Field(default_factory=list)
    reviews: List[ReviewOut] = Field(default_factory=list)


class ProductListResponse(BaseModel):
    items: List[ProductOut]
    total: int
    page: int
    limit: int


class ProductCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    product_type: str = Field(..., pattern=r"^(video|document|audio|course|consultation|mixed)$")
    content_type: Optional[str] = Field(None, pattern=r"^(single|bundle|course|collection)$")
    duration_minutes: Optional[int] = Field(None, ge=0)
    page_count: Optional[int] = Field(None, ge=0)
    category_ids: List[int] = Field(default_factory=list)


class ProductUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    product_type: Optional[str] = Field(None, pattern=r"^(video|document|audio|course|consultation|mixed)$")
    content_type: Optional[str] = Field(None, pattern=r"^(single|bundle|course|collection)$")
    duration_minutes: Optional[int] = Field(None, ge=0)
    page_count: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    category_ids: Optional[List[int]] = None


class FileOrder(BaseModel):
    id: int
    sort_order: int


class ReorderFilesRequest(BaseModel):
    orders: List[FileOrder]


class ReviewCreateRequest(BaseModel):
    rating: int
    review_text: Optional[str] = None


class TrackEventRequest(BaseModel):
    event_type: str = Field(..., pattern=r"^(view|preview|download|share)$")


class SalesAnalytics(BaseModel):
    total_revenue: float
    total_sales: int
    products_count: int
    top_products: List[ProductOut]


# ---------- payments ----------

class PaymentIntentRequest(BaseModel):
    product_id: int


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    purchase_id: int
    amount: int
    currency: str


class PurchaseOut(BaseModel):
    id: int
    product_id: int
    expert_id: Optional[int] = None
    amount: float
    currency: str
    status: str
    payment_method: Optional[str] = None
    purchased_at: Optional[int] = None
    created_at: int
    product: Optional[ProductOut] = None


class WebhookAck(BaseModel):
    received: bool = True


class PurchaseAccess(BaseModel):
    has_access: bool = True
    product_id: int
    file_id: Optional[int] = None
    file_key: str
    download_url: str
