from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Generic, Optional, Tuple, TypeVar, Union
from datetime import datetime

T = TypeVar("T")


class IndicatorSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    ips: Tuple[str, ...] = ()
    email: Optional[str] = None
    domain: Optional[str] = None


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    city: str = "N/A"
    region: str = "N/A"
    country: str = "N/A"

    def label(self) -> str:
        return f"{self.city}, {self.region}, {self.country}"


class AbuseScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    abuse_confidence_score: int  # 0..100


class EmailQuality(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = False
    disposable: bool = False
    deliverability: str = "N/A"
    fraud_score: int = 0
    domain_age: str = "N/A"


class DomainReputation(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: str
    reputation: Union[int, str] = "N/A"  # "N/A" when VirusTotal has no signal
    malicious_votes: int = 0


class Lookup(BaseModel, Generic[T]):
    """Outcome of one (indicator, service) lookup: either data or an error, never both."""

    model_config = ConfigDict(frozen=True)

    indicator: Optional[str] = None
    data: Optional[T] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _one_of(self):
        if (self.data is None) == (self.error is None):
            raise ValueError("exactly one of data/error must be set")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, indicator: Optional[str], data: T) -> "Lookup[T]":
        return cls(indicator=indicator, data=data)

    @classmethod
    def failure(cls, indicator: Optional[str], error: str) -> "Lookup[T]":
        return cls(indicator=indicator, error=error)


class Summary(BaseModel):
    model_config = ConfigDict(frozen=True)

    email_status: str
    domain_status: str
    geolocation_status: str
    abuse_reports_status: str
    ai_analysis_summary: str


class AnalysisReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    indicators: IndicatorSet
    geolocation: Tuple[Lookup[GeoLocation], ...] = ()
    abuse: Tuple[Lookup[AbuseScore], ...] = ()
    email: Lookup[EmailQuality]
    domain: Lookup[DomainReputation]
    verdict: str
    summary: Summary


class ApiKeys(BaseModel):
    abuseipdb: Optional[str] = None
    ipqualityscore: Optional[str] = None
    virustotal: Optional[str] = None
    openai: Optional[str] = None


class NetworkConfig(BaseModel):
    timeout_seconds: float = 15
    retries: int = 1  # attempts on HTTP 429 only
    backoff_seconds: float = 1.5


class NarrativeConfig(BaseModel):
    model: str = "gpt-3.5-turbo"
    max_tokens: int = 300
    attempts: int = 3
    url: str = "https://api.openai.com/v1/chat/completions"


class Config(BaseModel):
    api_keys: ApiKeys = Field(default_factory=ApiKeys)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    narrative: NarrativeConfig = Field(default_factory=NarrativeConfig)
