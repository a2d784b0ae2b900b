from pydantic import BaseModel, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str


class PaymentsRules(BaseModel):
    network_base_url: str = "https://api.minepi.com/v2"
    api_key_env: str = "PI_API_KEY"
    verification_timeout_seconds: float = Field(default=10.0, gt=0)
    lock_timeout_seconds: float = Field(default=30.0, gt=0)
    retry_after_seconds: int = Field(default=5, ge=1)
    user_cancel_reasons: list[str] = Field(default_factory=lambda: ["user_cancelled"])
    use_stub_verifier_without_key: bool = False


class EntitlementsRules(BaseModel):
    creator_bypass: bool = True


class CorsRules(BaseModel):
    allow_origins: list[str] = Field(default_factory=list)
    allow_credentials: bool = True


class OpsRules(BaseModel):
    data_dir_required: bool
    db_filename: str = "paywall.db"
    required_env: list[str] = Field(default_factory=list)


class Rules(BaseModel):
    project: ProjectRules
    payments: PaymentsRules
    entitlements: EntitlementsRules = Field(default_factory=EntitlementsRules)
    cors: CorsRules = Field(default_factory=CorsRules)
    ops: OpsRules
