from pydantic import BaseModel, Field, field_validator

MAX_QUERY_LENGTH = 500


class SearchRequest(BaseModel):
    query: str
    domains: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Query is required and must be a string")
        if len(v) > MAX_QUERY_LENGTH:
            raise ValueError(f"Query too long (max {MAX_QUERY_LENGTH} characters)")
        return v

    @field_validator("domains")
    @classmethod
    def validate_domains(cls, v: list[str]) -> list[str]:
        return [d.strip().lower() for d in v if d.strip()]


class SearchResults(BaseModel):
    summary: str
    query: str
    timestamp: str
    provider: str


class SearchResponse(BaseModel):
    results: SearchResults
    cached: bool = False
