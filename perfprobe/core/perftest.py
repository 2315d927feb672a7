from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import re
from urllib.parse import urlparse
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


# Reported for both metrics when a dry run short-circuits the browser.
DRY_RUN_SENTINEL = -1.0


class ThrottlingMode(Enum):
    CUSTOM = "custom"
    PAGESPEED_MOBILE = "pagespeed-mobile"
    PAGESPEED_DESKTOP = "pagespeed-desktop"


class HtmlReplaceRule(BaseModel):
    find: str = Field(..., description="Regex pattern applied to the whole document")
    replace: str = Field("", description="Literal replacement text")

    model_config = ConfigDict(frozen=True)

    @field_validator('find')
    @classmethod
    def validate_find(cls, v):
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Malformed html_replace pattern {v!r}: {e}")
        return v


class ModificationRules(BaseModel):
    block: Tuple[str, ...] = Field((), description="URL substrings whose requests are aborted")
    defer: Tuple[str, ...] = Field((), description="Script src substrings that get a defer attribute")
    html_replace: Optional[HtmlReplaceRule] = Field(None, description="Regex rewrite of the HTML document")

    model_config = ConfigDict(frozen=True)

    @field_validator('block', 'defer', mode='before')
    @classmethod
    def drop_empty_fragments(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        # An empty fragment would match every URL
        return tuple(fragment for fragment in v if fragment)

    @field_validator('html_replace')
    @classmethod
    def drop_empty_find(cls, v):
        # An empty pattern means no replacement
        if v is not None and not v.find:
            return None
        return v

    @property
    def rewrites_html(self) -> bool:
        return bool(self.defer) or self.html_replace is not None


class PerfTestRequest(BaseModel):
    url: Optional[str] = Field(None, description="Page to measure")
    rules: ModificationRules = Field(default_factory=ModificationRules, description="Modifications applied during each run")
    mode: ThrottlingMode = Field(ThrottlingMode.CUSTOM, description="Throttling profile to emulate")
    runs: int = Field(3, ge=1, description="Number of measured page loads")
    disable_cache: bool = Field(False, alias="disableCache", description="Disable the browser cache for each run")
    dry_run: bool = Field(False, alias="dryRun", description="Return a sentinel result without launching a browser")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator('rules', mode='before')
    @classmethod
    def default_rules(cls, v):
        return ModificationRules() if v is None else v

    @model_validator(mode='after')
    def validate_url(self):
        if self.dry_run:
            return self
        if not self.url or not self.url.strip():
            raise ValueError("URL is required")
        parsed = urlparse(self.url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f"URL must be an absolute http(s) URL: {self.url}")
        return self

    def to_parameters(self) -> Dict[str, Any]:
        """Normalized echo of the request, as returned to the caller."""
        return self.model_dump(mode='json', by_alias=True)


class RunSample(BaseModel):
    fcp: Optional[float] = Field(None, alias="FCP", description="First Contentful Paint in ms")
    lcp: Optional[float] = Field(None, alias="LCP", description="Largest Contentful Paint in ms")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator('fcp', 'lcp')
    @classmethod
    def validate_timing(cls, v):
        if v is not None and v < 0 and v != DRY_RUN_SENTINEL:
            raise ValueError(f"Paint timings cannot be negative: {v}")
        return v

    def to_response(self) -> Dict[str, Optional[float]]:
        return self.model_dump(by_alias=True)


class AverageMetrics(RunSample):
    pass


class AggregateResult(BaseModel):
    parameters: PerfTestRequest = Field(..., description="The request that produced this result")
    average_metrics: AverageMetrics = Field(..., alias="averageMetrics", description="Median FCP and LCP")
    individual_runs: Tuple[RunSample, ...] = Field(..., alias="individualRuns", description="Samples in run order")
    screenshot: str = Field("", description="Base64 encoded PNG of the clean capture")
    message: Optional[str] = Field(None, description="Informational note for the caller")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_response(self) -> Dict[str, Any]:
        response = {
            'parameters': self.parameters.to_parameters(),
            'averageMetrics': self.average_metrics.to_response(),
            'individualRuns': [sample.to_response() for sample in self.individual_runs],
            'screenshot': self.screenshot,
        }
        if self.message:
            response['message'] = self.message
        return response


class PerfTestError(Exception):
    pass


class ValidationError(PerfTestError):
    pass


class MalformedRuleError(ValidationError):
    pass


class LaunchError(PerfTestError):
    pass


class NavigationError(PerfTestError):
    pass


class NavigationTimeout(NavigationError):
    pass


class InterceptionError(PerfTestError):
    pass


class GlobalTimeout(PerfTestError):
    pass


class FetchError(PerfTestError):
    pass


def format_validation_errors(errors: List[Dict[str, Any]]) -> str:
    """Flatten pydantic error dicts into one readable line."""
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.get('loc', ()) if part != '__root__')
        message = error.get('msg', 'invalid value')
        # pydantic prefixes messages raised from validators
        message = message.replace('Value error, ', '')
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
