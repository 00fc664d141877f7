"""
Configuration management for the RFP Mart Analyzer.
"""

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class AppConfig(BaseModel):
    """Application configuration."""
    name: str = "RFP Mart Analyzer"
    version: str = "0.1.0"
    environment: str = Field(default_factory=lambda: os.getenv("APP_ENVIRONMENT", "development"))
    debug: bool = Field(default_factory=lambda: os.getenv("APP_DEBUG", "").lower() in ("true", "1", "yes"))

    @field_validator("environment", mode="before")
    @classmethod
    def get_environment_from_env(cls, v):
        if v is None:
            return os.getenv("APP_ENVIRONMENT", "development")
        return v

    @field_validator("debug", mode="before")
    @classmethod
    def get_debug_from_env(cls, v):
        if v is None:
            env_debug = os.getenv("APP_DEBUG", "")
            if env_debug:
                return env_debug.lower() in ("true", "1", "yes")
            return False
        return v


class SiteConfig(BaseModel):
    """Target site locations and credentials."""
    base_url: str = "https://www.rfpmart.com"
    login_url: str = "https://www.rfpmart.com/userlogin.html"
    category_url: str = "https://www.rfpmart.com/web-design-and-development-rfp-government-contract.html"
    rss_feed_url: str = "https://feeds.feedburner.com/WebDesign-RFP"
    username: str = Field(default_factory=lambda: os.getenv("RFPMART_USERNAME", ""))
    password: str = Field(default_factory=lambda: os.getenv("RFPMART_PASSWORD", ""))

    @field_validator("username", "password", mode="before")
    @classmethod
    def get_credentials_from_env(cls, v, info):
        env_value = os.getenv(f"RFPMART_{info.field_name.upper()}")
        if env_value:
            return env_value
        return v or ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class BrowserConfig(BaseModel):
    """Browser automation settings. Timeouts are milliseconds."""
    headless: bool = True
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    navigation_timeout: int = 30000
    page_load_timeout: int = 30000
    download_timeout: int = 60000
    login_timeout: int = 45000
    session_budget_hours: float = 4.0
    navigation_attempts: int = 3
    login_attempts: int = 2
    retry_delay: float = 1.0
    request_delay: float = 2.0

    @field_validator("navigation_attempts", "login_attempts")
    @classmethod
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError("attempt counts must be at least 1")
        return v


class LoginSelectors(BaseModel):
    username: str = 'input[type="email"]'
    password: str = 'input[type="password"]'
    submit: str = 'input[type="submit"]'
    error: str = ".error, .alert-danger, .invalid-feedback, .error-message"


class ListingSelectors(BaseModel):
    container: str = ".rfp-list, .contract-list, .opportunity-list"
    item: str = ".rfp-item, .contract-item, .opportunity-item"
    title: str = ".title, .rfp-title, h3, h4"
    posted_date: str = ".date-posted, .posted-date, .created-date"
    due_date: str = ".due-date, .closing-date, .deadline"
    download_link: str = 'a[href*="download"], a[href*="document"], .download-btn'
    next_page: str = '.next, .pagination-next, a[rel="next"]'
    rfp_id: str = ".rfp-id, .contract-id, .opportunity-id"


class AuthSelectors(BaseModel):
    """Signals used to decide whether the browser is logged in."""
    positive: List[str] = Field(default_factory=lambda: [
        'a[href*="logout"]',
        'a[href*="profile"]',
        'a[href*="account"]',
        ".user-menu",
        ".logout",
        ".dashboard",
    ])
    negative_url_markers: List[str] = Field(default_factory=lambda: ["login", "signin"])
    negative_title_markers: List[str] = Field(default_factory=lambda: ["login", "sign in"])
    logout: List[str] = Field(default_factory=lambda: [
        'a[href*="logout"]',
        'button[onclick*="logout"]',
        ".logout",
        'a:has-text("Logout")',
        'a:has-text("Sign Out")',
    ])


class SelectorConfig(BaseModel):
    """CSS selectors for the target site. Selectors are data, not code."""
    login: LoginSelectors = Field(default_factory=LoginSelectors)
    listing: ListingSelectors = Field(default_factory=ListingSelectors)
    auth: AuthSelectors = Field(default_factory=AuthSelectors)
    download_host_pattern: str = "files.rfpmart.com"


class AcquisitionConfig(BaseModel):
    """Document acquisition settings."""
    mode: str = "memory"  # memory, disk
    discovery_mode: str = "listing"  # listing, rss
    download_dir: str = "./data/rfps"
    max_file_size: int = 100 * 1024 * 1024
    allowed_extensions: List[str] = Field(default_factory=lambda: [".pdf", ".doc", ".docx", ".zip", ".rar", ".txt"])
    archive_document_extensions: List[str] = Field(default_factory=lambda: [".pdf", ".doc", ".docx", ".txt", ".rtf"])
    max_archive_entry_size: int = 50 * 1024 * 1024
    max_archive_depth: int = 2
    max_pages: int = 25
    rss_max_items: int = 100
    rss_timeout: float = 10.0

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v):
        if v not in ("memory", "disk"):
            raise ValueError(f"acquisition mode must be 'memory' or 'disk', got {v!r}")
        return v

    @field_validator("discovery_mode")
    @classmethod
    def validate_discovery_mode(cls, v):
        if v not in ("listing", "rss"):
            raise ValueError(f"discovery mode must be 'listing' or 'rss', got {v!r}")
        return v

    @field_validator("allowed_extensions", "archive_document_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]


class KeywordConfig(BaseModel):
    """Keyword sets consumed by the criteria checker."""
    higher_education: List[str] = Field(default_factory=lambda: [
        "university", "college", "academic", "education", "campus", "school", "institute",
    ])
    cms_preferred: List[str] = Field(default_factory=lambda: ["drupal", "wordpress", "modern campus"])
    cms_acceptable: List[str] = Field(default_factory=lambda: ["joomla", "squarespace", "wix"])
    project_types: List[str] = Field(default_factory=lambda: ["redesign", "redevelopment", "migration", "rebuild"])
    budget: List[str] = Field(default_factory=lambda: ["budget", "cost", "price", "funding", "appropriation"])
    tech_positive: List[str] = Field(default_factory=lambda: ["responsive", "accessibility", "wcag", "ux", "ui"])
    red_flags: List[str] = Field(default_factory=lambda: [
        "maintenance only", "minor updates", "hosting only", "logo design only",
    ])
    preferred_states: List[str] = Field(default_factory=lambda: ["california", "new york", "texas", "florida"])
    large_institution: List[str] = Field(default_factory=lambda: ["state university", "research university"])


class ScoringWeights(BaseModel):
    higher_education: int = 30
    cms_preferred: int = 20
    cms_acceptable: int = 10
    project_type: int = 15
    budget_high: int = 20
    budget_medium: int = 10
    budget_low: int = 5
    tech_keywords: int = 5
    large_institution: int = 10
    preferred_state: int = 5
    red_flags: int = -15
    accessibility: int = 3
    responsive: int = 2
    api: int = 2

    @property
    def characteristics_max(self) -> int:
        return self.accessibility + self.responsive + self.api

    @property
    def max_possible(self) -> int:
        return (
            self.higher_education
            + self.cms_preferred
            + self.project_type
            + self.budget_high
            + self.tech_keywords
            + self.large_institution
            + self.preferred_state
            + self.characteristics_max
        )


class TierThresholds(BaseModel):
    """Percentage thresholds for recommendation tiers."""
    high: int = 75
    medium: int = 50
    low: int = 25

    @model_validator(mode="after")
    def validate_order(self):
        if not (self.high > self.medium > self.low > 0):
            raise ValueError(
                f"tier thresholds must be strictly ordered high > medium > low > 0, "
                f"got high={self.high} medium={self.medium} low={self.low}"
            )
        return self


class BudgetThresholds(BaseModel):
    min_acceptable: int = 50000
    min_preferred: int = 100000
    floor: int = 1000
    ceiling: int = 50000000


class ScoringConfig(BaseModel):
    """Fit scoring configuration."""
    keywords: KeywordConfig = Field(default_factory=KeywordConfig)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    thresholds: TierThresholds = Field(default_factory=TierThresholds)
    budget: BudgetThresholds = Field(default_factory=BudgetThresholds)
    min_corpus_chars: int = 100


class ProcessingConfig(BaseModel):
    """Text normalization settings."""
    max_workers: int = 4


class RetentionConfig(BaseModel):
    """Artifact retention configuration."""
    data_dir: str = "./data/rfps"
    max_age_days: int = 30
    fit_threshold: int = 25
    cleanup_poor_fits: bool = True
    dry_run: bool = False
    preserved_files: List[str] = Field(default_factory=lambda: ["fit-report.*", "fit-analysis.json", "metadata.json"])


class DatabaseConfig(BaseModel):
    """Database configuration settings."""
    url: str = Field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./data/database.sqlite"))
    echo: bool = False

    @field_validator("url", mode="before")
    @classmethod
    def get_url_from_env(cls, v):
        env_url = os.getenv("DATABASE_URL")
        if env_url:
            return env_url
        return v or "sqlite:///./data/database.sqlite"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    file: Optional[str] = "./logs/rfpmart-analyzer.log"


class Config(BaseModel):
    """Main configuration class."""
    app: AppConfig = Field(default_factory=AppConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    selectors: SelectorConfig = Field(default_factory=SelectorConfig)
    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to configuration file. If None, uses default location.

    Returns:
        Config object with all settings.
    """
    if config_path is None:
        config_path = Path(__file__).parent.parent / "config" / "default.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    return Config(**config_data)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Config object with all settings.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> Config:
    """
    Reload configuration from file.

    Args:
        config_path: Path to configuration file. If None, uses default location.

    Returns:
        Updated Config object.
    """
    global _config
    _config = load_config(config_path)
    return _config
