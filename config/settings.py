"""
Configuration settings for the application
"""
from typing import Optional, Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Plan names as they appear on the processor's products
PLAN_STARTER = "Starter"
PLAN_PROFESSIONAL = "Professional"
PLAN_ENTERPRISE = "Enterprise"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,  # Allow both field name and alias
        extra="ignore",
    )

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_timeout_seconds: float = Field(default=10.0, alias="STRIPE_TIMEOUT_SECONDS")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")

    # Price catalog (one recurring price per plan)
    stripe_price_starter: Optional[str] = Field(default=None, alias="STRIPE_PRICE_STARTER")
    stripe_price_professional: Optional[str] = Field(default=None, alias="STRIPE_PRICE_PROFESSIONAL")
    stripe_price_enterprise: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ENTERPRISE")

    # Identity provider tokens
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_audience: Optional[str] = Field(default="authenticated", alias="JWT_AUDIENCE")

    # Infrastructure configuration
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Frontend configuration
    frontend_url: Optional[str] = Field(default="http://localhost:5173", alias="FRONTEND_URL")

    # Trial configuration
    trial_days: int = Field(default=14, alias="TRIAL_DAYS")

    # Environment configuration
    env: Optional[str] = Field(default=None, alias="ENV")

    def price_catalog(self) -> Dict[str, str]:
        """Configured price id -> plan name. Unset prices are left out."""
        catalog = {
            self.stripe_price_starter: PLAN_STARTER,
            self.stripe_price_professional: PLAN_PROFESSIONAL,
            self.stripe_price_enterprise: PLAN_ENTERPRISE,
        }
        return {price: plan for price, plan in catalog.items() if price}


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.env and settings.env.lower() == "production")
