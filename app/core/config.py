from decimal import Decimal
from typing import Dict, List

from pydantic_settings import BaseSettings
from pydantic import Field
import os


class Config(BaseSettings):
    # Database Configuration
    db_url: str = Field(default="sqlite+aiosqlite:///./data/fees.db", alias="DB_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Credentials
    banking_encryption_key: str = Field(default="", alias="BANKING_ENCRYPTION_KEY")
    import_api_token: str = Field(default="", alias="IMPORT_API_TOKEN")  # Unattended CSV uploads only
    operator_api_tokens: str = Field(default="", alias="OPERATOR_API_TOKENS")  # Comma-separated list

    # Acquisition (banking-sync runner fronting the protocol client and the browser fallback)
    sync_runner_url: str = Field(default="", alias="SYNC_RUNNER_URL")
    sync_runner_token: str = Field(default="", alias="SYNC_RUNNER_TOKEN")
    acquisition_method: str = Field(default="protocol", alias="ACQUISITION_METHOD")  # protocol | browser
    sync_runner_timeout_seconds: float = Field(default=300.0, alias="SYNC_RUNNER_TIMEOUT_SECONDS")

    # Sync pass
    sync_interval_minutes: int = Field(default=0, alias="SYNC_INTERVAL_MINUTES")  # 0 disables the scheduler
    sync_initial_lookback_days: int = Field(default=90, alias="SYNC_INITIAL_LOOKBACK_DAYS")
    sync_backdate_days: int = Field(default=1, alias="SYNC_BACKDATE_DAYS")
    sync_lock_ttl_minutes: int = Field(default=30, alias="SYNC_LOCK_TTL_MINUTES")

    # Matching
    member_number_pattern: str = Field(default=r"\b(\d{5})\b", alias="MEMBER_NUMBER_PATTERN")
    name_similarity_threshold: float = Field(default=0.85, alias="NAME_SIMILARITY_THRESHOLD")
    # Regular fee amounts; exact multiples of these hint at a bulk payment
    food_fee_amount: Decimal = Field(default=Decimal("45.40"), alias="FOOD_FEE_AMOUNT")
    membership_fee_amount: Decimal = Field(default=Decimal("30.00"), alias="MEMBERSHIP_FEE_AMOUNT")

    # Late payments
    late_payment_day: int = Field(default=15, alias="LATE_PAYMENT_DAY")
    late_fee_amount: Decimal = Field(default=Decimal("10.00"), alias="LATE_FEE_AMOUNT")
    late_fee_due_days: int = Field(default=14, alias="LATE_FEE_DUE_DAYS")

    # Bank CSV layout (BFS/SozialBank export by default)
    csv_delimiter: str = Field(default=";", alias="CSV_DELIMITER")
    csv_encoding: str = Field(default="iso-8859-1", alias="CSV_ENCODING")
    csv_date_format: str = Field(default="%d.%m.%Y", alias="CSV_DATE_FORMAT")
    csv_columns: str = Field(
        default="booking_date:4,value_date:5,payer_name:6,payer_iban:7,description:10,amount:11,currency:12",
        alias="CSV_COLUMNS",
    )

    is_production: bool = os.getenv("ENVIRONMENT", "development").lower() == "production"

    @property
    def operator_tokens(self) -> List[str]:
        return [t.strip() for t in self.operator_api_tokens.split(",") if t.strip()]

    @property
    def csv_column_map(self) -> Dict[str, int]:
        columns: Dict[str, int] = {}
        for pair in self.csv_columns.split(","):
            if not pair.strip():
                continue
            name, _, index = pair.partition(":")
            columns[name.strip()] = int(index)
        return columns

    # Path to .env file (for loading env vars)
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True


# Instantiate the settings
config = Config()
