# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Creator Paygate"
    API_V1_STR: str = "/api/v1"

    # Chain the gate accepts payments on
    CHAIN_RPC_URL: AnyHttpUrl = "https://mainnet.base.org" # validates that it's a URL
    CHAIN_ID: int = 8453  # Base mainnet
    TOKEN_CONTRACT_ADDRESS: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"  # USDC on Base
    TOKEN_DECIMALS: int = 6

    # Settlement
    PLATFORM_FEE_BPS: int = 2000  # 20%
    CHALLENGE_TTL_SECONDS: int = 300
    REQUIRED_CONFIRMATIONS: int = 1

    # RPC behaviour
    RPC_TIMEOUT_SECONDS: float = 10.0
    RPC_MAX_RETRIES: int = 3
    RPC_BACKOFF_SECONDS: float = 0.5
    CONFIRMATION_POLLS: int = 3

    PAYGATE_AUDIT_LOG_PATH: str = "logs/paygate_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
