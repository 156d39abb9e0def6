"""AI analysis and narrative summaries using Claude tool-use."""

import json
from typing import TYPE_CHECKING, Any, Final

from pydantic import BaseModel, ConfigDict, ValidationError

from cma_analyst.logging import get_logger
from cma_analyst.models import (
    CMAReport,
    ConditionAssessment,
    EnrichmentBundle,
    LocationHints,
    NarrativeSummary,
    PropertyDescriptor,
    ValuationEstimate,
)

if TYPE_CHECKING:
    import anthropic

logger = get_logger(__name__)

# SDK retry configuration
MAX_RETRIES: Final = 3
REQUEST_TIMEOUT: Final = 90.0
MAX_TOKENS: Final = 4096
SUMMARY_MAX_TOKENS: Final = 8192

SYSTEM_PROMPT: Final = """\
You are a real estate analyst specialising in the Spanish property market, \
particularly the Costa del Sol. You produce concise, factual analysis for \
estate agents preparing a comparative market analysis. Never invent figures \
that are not present in the data you are given; say when data is missing."""


class _LocationHintsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    specific_streets: list[str]
    neighbourhoods: list[str]
    urbanizations: list[str]
    landmarks: list[str]
    enhanced_address: str
    search_queries: list[str]


class _ConditionResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    condition: str
    architectural_style: str


class _SummaryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    executive_summary: str
    investment_recommendation: str
    price_range: str
    value_forecast: str
    pros_and_cons: str
    market_comparison: str
    amenities_summary: str
    location_overview: str
    lifestyle_assessment: str
    property_condition: str
    architectural_analysis: str
    market_timing: str
    walkability_insights: str
    development_impact: str
    comparable_insights: str
    investment_timing: str
    risk_assessment: str


class _SearchQueriesResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    queries: list[str]


def _inline_refs(schema: dict[str, Any]) -> dict[str, Any]:
    """Resolve $ref/$defs in a Pydantic JSON schema and strip title fields."""
    defs = schema.pop("$defs", {})

    def _resolve(node: Any) -> Any:
        if isinstance(node, dict):
            if "$ref" in node:
                return _resolve(dict(defs[node["$ref"].rsplit("/", 1)[-1]]))
            return {k: _resolve(v) for k, v in node.items() if k != "title"}
        if isinstance(node, list):
            return [_resolve(item) for item in node]
        return node

    result: dict[str, Any] = _resolve(schema)
    result.pop("title", None)
    return result


def _build_tool_schema(name: str, description: str, model: type[BaseModel]) -> dict[str, Any]:
    schema = _inline_refs(model.model_json_schema())
    schema.pop("description", None)
    return {"name": name, "description": description, "input_schema": schema}


LOCATION_TOOL: Final[dict[str, Any]] = _build_tool_schema(
    "location_details",
    "Return location details extracted from a property listing",
    _LocationHintsResponse,
)

CONDITION_TOOL: Final[dict[str, Any]] = _build_tool_schema(
    "condition_and_style",
    "Return the inferred property condition and architectural style",
    _ConditionResponse,
)

SUMMARY_TOOL: Final[dict[str, Any]] = _build_tool_schema(
    "cma_summary",
    "Return the narrative sections of a comparative market analysis",
    _SummaryResponse,
)

SEARCH_QUERIES_TOOL: Final[dict[str, Any]] = _build_tool_schema(
    "search_queries",
    "Return web search queries for further market research",
    _SearchQueriesResponse,
)

CONDITIONS: Final = ("excellent", "good", "fair", "needs work", "renovation project", "rebuild")


def _describe(prop: PropertyDescriptor) -> str:
    return json.dumps(prop.model_dump(mode="json", exclude_none=True), ensure_ascii=False, indent=2)


class ClaudePropertyAI:
    """Claude-backed implementation of the AI collaborators.

    Every call uses forced tool-use so the response is structured. Failures
    are logged and reported as "no result" (``None`` or an empty list).
    """

    def __init__(self, api_key: str, *, model: str = "claude-sonnet-4-5-20250929") -> None:
        self._api_key = api_key
        self._model = model
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> "anthropic.AsyncAnthropic":
        """Get or create the Anthropic client."""
        if self._client is None:
            import anthropic as _anthropic
            import httpx

            self._client = _anthropic.AsyncAnthropic(
                api_key=self._api_key,
                max_retries=MAX_RETRIES,
                timeout=httpx.Timeout(REQUEST_TIMEOUT),
            )
        return self._client

    async def _call_tool(
        self,
        tool: dict[str, Any],
        prompt: str,
        *,
        operation: str,
        max_tokens: int = MAX_TOKENS,
    ) -> dict[str, Any] | None:
        from anthropic import APIConnectionError, APIStatusError, RateLimitError
        from anthropic.types import ToolParam, ToolUseBlock

        tool_param: ToolParam = tool  # type: ignore[assignment]
        try:
            response = await self._get_client().messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                tools=[tool_param],
                tool_choice={"type": "tool", "name": tool["name"]},
            )
        except RateLimitError as e:
            logger.error("rate_limit_exhausted", operation=operation, error=str(e))
            return None
        except APIConnectionError as e:
            logger.error("connection_error", operation=operation, error=str(e))
            return None
        except APIStatusError as e:
            logger.warning(
                "api_status_error",
                operation=operation,
                status_code=e.status_code,
                error=str(e),
            )
            return None

        tool_use_block = next(
            (block for block in response.content if isinstance(block, ToolUseBlock)),
            None,
        )
        if tool_use_block is None:
            logger.warning(
                "no_tool_use_in_response",
                operation=operation,
                stop_reason=response.stop_reason,
            )
            return None
        return dict(tool_use_block.input)  # type: ignore[call-overload]

    async def analyze_location_description(
        self, prop: PropertyDescriptor
    ) -> LocationHints | None:
        """Pull streets, neighbourhoods and landmarks out of listing text."""
        if not prop.description and not prop.user_context:
            return None

        prompt = (
            "Extract precise location details from this property listing. Identify "
            "specific streets, neighbourhoods, urbanizations and nearby landmarks, "
            "then write the most precise address you can for geocoding, plus up to "
            "five geocoding search queries.\n\n"
            f"Property:\n{_describe(prop)}"
        )
        data = await self._call_tool(LOCATION_TOOL, prompt, operation="location_description")
        if data is None:
            return None
        try:
            parsed = _LocationHintsResponse.model_validate(data)
        except ValidationError:
            logger.warning("location_hints_invalid", exc_info=True)
            return None
        return LocationHints.model_validate(parsed.model_dump())

    async def analyze_condition_and_style(
        self, prop: PropertyDescriptor
    ) -> ConditionAssessment | None:
        prompt = (
            "Infer the condition and architectural style of this property from its "
            f"description, features and age. Condition must be one of: {', '.join(CONDITIONS)}. "
            "Style examples: modern, contemporary, andalusian, mediterranean, rustic, "
            "traditional spanish.\n\n"
            f"Property:\n{_describe(prop)}"
        )
        data = await self._call_tool(CONDITION_TOOL, prompt, operation="condition_and_style")
        if data is None:
            return None
        try:
            parsed = _ConditionResponse.model_validate(data)
        except ValidationError:
            logger.warning("condition_assessment_invalid", exc_info=True)
            return None

        condition = parsed.condition.strip().lower()
        return ConditionAssessment(
            condition=condition if condition in CONDITIONS else None,
            architectural_style=parsed.architectural_style.strip().lower() or None,
        )

    async def generate_summary(
        self,
        prop: PropertyDescriptor,
        bundle: EnrichmentBundle,
        valuation: ValuationEstimate,
    ) -> NarrativeSummary | None:
        context = {
            "property": prop.model_dump(mode="json", exclude_none=True),
            "valuation": valuation.model_dump(mode="json"),
            "market_data": (
                bundle.market_data.model_dump(mode="json") if bundle.market_data else None
            ),
            "comparables": [c.model_dump(mode="json") for c in bundle.comparables[:10]],
            "comparables_total": bundle.comparables_total,
            "amenities": [a.model_dump(mode="json") for a in bundle.amenities[:25]],
            "mobility": bundle.mobility.model_dump(mode="json") if bundle.mobility else None,
            "developments": [d.model_dump(mode="json") for d in bundle.developments],
            "neighborhood": bundle.neighborhood_narrative,
        }
        prompt = (
            "Write the narrative sections of a comparative market analysis for the "
            "property below. Base every figure on the supplied data; the valuation "
            "estimate has already been calculated and must be used as given.\n\n"
            f"{json.dumps(context, ensure_ascii=False, indent=2)}"
        )
        data = await self._call_tool(
            SUMMARY_TOOL, prompt, operation="summary", max_tokens=SUMMARY_MAX_TOKENS
        )
        if data is None:
            return None
        try:
            parsed = _SummaryResponse.model_validate(data)
            return NarrativeSummary.model_validate(parsed.model_dump())
        except ValidationError:
            logger.warning("summary_invalid", exc_info=True)
            return None

    async def generate_search_queries(
        self, prop: PropertyDescriptor, report: CMAReport, max_queries: int
    ) -> list[str]:
        kind = "rental" if prop.is_rental else "sales"
        prompt = (
            f"Suggest up to {max_queries} web search queries that would fill gaps in this "
            f"{kind} market analysis for a {prop.property_type} in {prop.city}, {prop.province}. "
            "Prefer official Spanish data sources (INE, Catastro, Junta de Andalucía) and "
            "market reports over individual listings.\n\n"
            f"Market trends so far:\n{report.market_trends.model_dump_json(indent=2)}"
        )
        data = await self._call_tool(SEARCH_QUERIES_TOOL, prompt, operation="search_queries")
        if data is None:
            return []
        try:
            queries = _SearchQueriesResponse.model_validate(data).queries
        except ValidationError:
            logger.warning("search_queries_invalid", exc_info=True)
            return []
        return [q.strip() for q in queries if q.strip()][:max_queries]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
