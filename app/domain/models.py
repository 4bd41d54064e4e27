# -*- coding: utf-8 -*-
# @Author: yaccii
# @Description:

from __future__ import annotations

import datetime as dt
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.infra.db import Base


def _ts() -> int:
    return int(time.time())


class Profile(Base):
    """家长 / 专家 共用一张 profiles 表，account_type 区分"""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, doc="bcrypt")
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, doc="mom/dad/caregiver/other")
    custom_role: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False, default="parent", doc="parent/expert")

    expecting_status: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, doc="yes/no/trying")
    has_kids: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kids_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parenting_styles: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    topics_of_interest: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    personal_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    onboarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    onboarding_steps: Mapped[List[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="已完成的引导步骤",
    )

    # 专家字段
    expert_bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expert_specialties: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expert_credentials: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expert_education: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expert_languages: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expert_experience_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expert_consultation_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True, doc="美元")
    expert_consultation_types: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    expert_office_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    expert_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    expert_total_reviews: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expert_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expert_profile_visibility: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expert_accepts_new_clients: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expert_availability_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    expert_response_time_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expert_timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    expert_website_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    expert_social_links: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    kids: Mapped[List["Kid"]] = relationship(
        "Kid",
        back_populates="parent",
        order_by="Kid.id",
        cascade="all, delete-orphan",
    )
    auth_sessions: Mapped[List["AuthSession"]] = relationship(
        "AuthSession",
        back_populates="profile",
        cascade="all, delete-orphan",
    )


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True,
    )

    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    revoked_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, default=None)
    last_seen_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, default=None)

    ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    profile: Mapped["Profile"] = relationship("Profile", back_populates="auth_sessions")


class Kid(Base):
    __tablename__ = "kids"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    parent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    birth_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, doc="整岁")

    is_expecting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    due_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    expected_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    parent: Mapped["Profile"] = relationship("Profile", back_populates="kids")


class ChatSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True,
    )
    child_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("kids.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, doc="会话标题")
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True, doc="会话摘要（每 10 条消息刷新）")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_message_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, default=None)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    child: Mapped[Optional["Kid"]] = relationship("Kid")
    messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="session",
        order_by="Message.id",
        cascade="all, delete-orphan",
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role: Mapped[str] = mapped_column(String(20), nullable=False, doc="user/assistant")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="messages")


class ExpertEmbedding(Base):
    __tablename__ = "expert_embeddings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expert_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    profile_text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[List[float]] = mapped_column(JSON, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    expert: Mapped["Profile"] = relationship("Profile")


class ProductCategory(Base):
    __tablename__ = "product_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)


class ProductCategoryMapping(Base):
    __tablename__ = "product_category_mappings"
    __table_args__ = (UniqueConstraint("product_id", "category_id", name="uq_product_category"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("product_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    category: Mapped["ProductCategory"] = relationship("ProductCategory")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expert_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("profiles.id"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, doc="美元")
    product_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        doc="video/document/audio/course/consultation/mixed",
    )
    content_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="single",
        doc="single/bundle/course/collection",
    )

    file_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True, doc="单文件旧字段")
    primary_file_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    file_size_mb: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    has_multiple_files: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_files_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    expert: Mapped["Profile"] = relationship("Profile")
    files: Mapped[List["ProductFile"]] = relationship(
        "ProductFile",
        back_populates="product",
        order_by="ProductFile.sort_order",
        cascade="all, delete-orphan",
    )
    category_mappings: Mapped[List["ProductCategoryMapping"]] = relationship(
        "ProductCategoryMapping",
        cascade="all, delete-orphan",
    )
    reviews: Mapped[List["ProductReview"]] = relationship(
        "ProductReview",
        back_populates="product",
        order_by="ProductReview.id.desc()",
        cascade="all, delete-orphan",
    )


class ProductFile(Base):
    __tablename__ = "product_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    file_url: Mapped[str] = mapped_column(String(512), nullable=False, doc="R2 相对 key")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False, doc="video/audio/image/document/other")
    file_size_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    mime_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    display_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)

    product: Mapped["Product"] = relationship("Product", back_populates="files")


class ProductReview(Base):
    __tablename__ = "product_reviews"
    __table_args__ = (UniqueConstraint("product_id", "user_id", name="uq_review_product_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_verified_purchase: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    product: Mapped["Product"] = relationship("Product", back_populates="reviews")
    user: Mapped["Profile"] = relationship("Profile")


class ProductAnalytics(Base):
    __tablename__ = "product_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("profiles.id"), nullable=True)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False, doc="view/preview/download/share")
    referrer: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)


class Purchase(Base):
    __tablename__ = "purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    expert_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)

    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, doc="美元")
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        doc="pending/completed/failed",
    )
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True, index=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    purchased_at: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, default=None)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=_ts)
    updated_at: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        onupdate=_ts,
    )

    product: Mapped["Product"] = relationship("Product")
