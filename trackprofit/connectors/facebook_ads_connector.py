"""
Facebook Marketing (Graph API) connector.

Reads the ad-account directory, campaign metadata with per-campaign
insights, and per-day account spend. Amounts are returned in the ad
account's currency; scaling into the store currency happens in the caller.
"""
import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from trackprofit.config import get_settings
from trackprofit.connectors.base_connector import BaseConnector
from trackprofit.errors import AuthFailed, InvalidInput, TrackProfitError, TransientError
from trackprofit.utils.logger import log
from trackprofit.utils.money import ZERO, round2, safe_div, to_decimal, to_int

settings = get_settings()

ACCOUNT_STATUSES = {
    1: "ACTIVE",
    2: "DISABLED",
    3: "UNSETTLED",
    7: "PENDING_RISK_REVIEW",
    9: "IN_GRACE_PERIOD",
    100: "PENDING_CLOSURE",
    101: "CLOSED",
}

# Graph API error codes
AUTH_ERROR_CODES = {102, 190, 463, 467}
THROTTLE_ERROR_CODES = {1, 2, 4, 17, 32, 341, 613, 80000, 80004}

PURCHASE_ACTION = "purchase"
INSIGHTS_PAGE_LIMIT = 500
MAX_INSIGHT_PAGES = 20


def account_status_name(code) -> str:
    return ACCOUNT_STATUSES.get(to_int(code, -1), "UNKNOWN")


def normalize_account_id(account_id: str) -> str:
    account_id = (account_id or "").strip()
    if not account_id:
        raise InvalidInput("adAccountId is required", field="adAccountId")
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def _action_value(entries: Optional[List[Dict[str, Any]]], action_type: str = PURCHASE_ACTION) -> str:
    for entry in entries or []:
        if entry.get("action_type") == action_type:
            return entry.get("value") or "0"
    return "0"


@dataclass
class AdAccount:
    id: str
    account_id: str
    name: str
    status: str
    currency: Optional[str] = None

    @classmethod
    def from_graph(cls, raw: Dict[str, Any]) -> "AdAccount":
        return cls(
            id=raw.get("id") or f"act_{raw.get('account_id')}",
            account_id=str(raw.get("account_id") or ""),
            name=raw.get("name") or "Unnamed account",
            status=account_status_name(raw.get("account_status")),
            currency=raw.get("currency"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "name": self.name,
            "status": self.status,
            "currency": self.currency,
        }


@dataclass
class AdMetrics:
    total_spend: Decimal = ZERO
    total_revenue: Decimal = ZERO
    total_purchases: int = 0
    total_impressions: int = 0
    roas: Decimal = ZERO


@dataclass
class DailyAdMetric:
    date: date
    spend: Decimal
    revenue: Optional[Decimal] = None


@dataclass
class CampaignReport:
    campaigns: List[Dict[str, Any]]
    metrics: AdMetrics
    currency: str
    account_name: str
    daily_metrics: Optional[List[DailyAdMetric]] = field(default=None)


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    return round2(safe_div(numerator, denominator))


class FacebookAdsConnector(BaseConnector):
    """Connector for the Facebook Marketing API."""

    def __init__(self, access_token: str, api_version: Optional[str] = None):
        super().__init__("ads")
        self.access_token = (access_token or "").strip()
        self.api_version = api_version or settings.facebook_api_version
        self.base_url = f"{settings.facebook_graph_url.rstrip('/')}/{self.api_version}"

    def _normalize_status(self, status: int, body: str) -> Optional[TrackProfitError]:
        if status < 400:
            return None
        try:
            error = (json.loads(body) or {}).get("error") or {}
        except (TypeError, ValueError, AttributeError):
            error = {}
        code = to_int(error.get("code"), -1)
        message = error.get("message") or (body or "")[:300]

        if code in AUTH_ERROR_CODES or (error.get("type") == "OAuthException" and code in (-1, 10, 200)):
            return self._auth_error(f"Facebook token rejected: {message}")
        if code in THROTTLE_ERROR_CODES or error.get("is_transient"):
            return TransientError(f"Facebook throttled the request: {message}", provider=self.name)
        return super()._normalize_status(status, body)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, operation_name: str = "get") -> Any:
        if not self.access_token:
            raise AuthFailed("Facebook access token is required", provider=self.name)
        query = dict(params or {})
        query["access_token"] = self.access_token
        return await self._retry_operation(
            lambda: self._request_json("GET", f"{self.base_url}/{path.lstrip('/')}", params=query),
            operation_name=operation_name,
        )

    async def _get_all_pages(self, path: str, params: Dict[str, Any], operation_name: str) -> List[Dict[str, Any]]:
        """Follow ``paging.cursors.after`` until the edge is exhausted."""
        rows: List[Dict[str, Any]] = []
        query = dict(params)
        for _ in range(MAX_INSIGHT_PAGES):
            payload = await self._get(path, query, operation_name) or {}
            rows.extend(row for row in payload.get("data") or [] if row)
            paging = payload.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                break
            query["after"] = after
        return rows

    async def validate_token(self) -> Dict[str, Any]:
        """Resolve the token's user; raises AuthFailed when invalid."""
        me = await self._get("me", {"fields": "id,name"}, "validate_token")
        if not isinstance(me, dict) or not me.get("id"):
            raise AuthFailed("Facebook token did not resolve to a user", provider=self.name)
        return me

    async def get_ad_accounts(self) -> List[AdAccount]:
        rows = await self._get_all_pages(
            "me/adaccounts",
            {"fields": "name,account_id,account_status,currency", "limit": 100},
            "get_ad_accounts",
        )
        accounts = [AdAccount.from_graph(row) for row in rows]
        log.info(f"Fetched {len(accounts)} Facebook ad accounts")
        return accounts

    async def get_campaigns(self, account_id: str, since: date, until: date) -> CampaignReport:
        """Campaign list merged with per-campaign insights for the window."""
        account_id = normalize_account_id(account_id)
        time_range = json.dumps({"since": since.isoformat(), "until": until.isoformat()})

        account = await self._get(account_id, {"fields": "currency,name"}, "get_account") or {}
        campaigns_raw = await self._get_all_pages(
            f"{account_id}/campaigns",
            {"fields": "name,objective,status,lifetime_budget,daily_budget,start_time,end_time", "limit": 200},
            "get_campaigns",
        )
        insights = await self._get_all_pages(
            f"{account_id}/insights",
            {
                "level": "campaign",
                "fields": "campaign_id,spend,impressions,actions,action_values,cost_per_action_type",
                "time_range": time_range,
                "limit": INSIGHTS_PAGE_LIMIT,
            },
            "get_insights",
        )

        metrics = AdMetrics()
        by_campaign: Dict[str, Dict[str, Any]] = {}
        for insight in insights:
            spend = to_decimal(insight.get("spend"))
            revenue = to_decimal(_action_value(insight.get("action_values")))
            purchases = to_int(_action_value(insight.get("actions")))
            impressions = to_int(insight.get("impressions"))

            metrics.total_spend += spend
            metrics.total_revenue += revenue
            metrics.total_purchases += purchases
            metrics.total_impressions += impressions

            by_campaign[str(insight.get("campaign_id"))] = {
                "spend": spend,
                "revenue": revenue,
                "purchases": purchases,
                "impressions": impressions,
                "costPerPurchase": to_decimal(_action_value(insight.get("cost_per_action_type"))),
            }
        metrics.roas = _ratio(metrics.total_revenue, metrics.total_spend)

        campaigns = []
        for raw in campaigns_raw:
            stats = by_campaign.get(str(raw.get("id")), {})
            spend = stats.get("spend", ZERO)
            revenue = stats.get("revenue", ZERO)
            campaigns.append({
                "id": raw.get("id"),
                "name": raw.get("name"),
                "objective": raw.get("objective"),
                "status": raw.get("status"),
                "budget": raw.get("lifetime_budget") or raw.get("daily_budget"),
                "budgetType": "LIFETIME" if raw.get("lifetime_budget") else "DAILY",
                "startTime": raw.get("start_time"),
                "endTime": raw.get("end_time"),
                "spend": spend,
                "revenue": revenue,
                "impressions": stats.get("impressions", 0),
                "purchases": stats.get("purchases", 0),
                "costPerPurchase": stats.get("costPerPurchase", ZERO),
                "roas": _ratio(revenue, spend),
            })

        try:
            daily = await self.get_daily_spend(account_id, since, until)
        except TransientError as e:
            log.warning(f"Daily spend unavailable for {account_id}, using totals only: {e}")
            daily = None

        return CampaignReport(
            campaigns=campaigns,
            metrics=metrics,
            currency=account.get("currency") or "USD",
            account_name=account.get("name") or "Unknown Account",
            daily_metrics=daily,
        )

    async def get_daily_spend(self, account_id: str, since: date, until: date) -> List[DailyAdMetric]:
        """Account-level spend bucketed per day (``time_increment=1``)."""
        account_id = normalize_account_id(account_id)
        rows = await self._get_all_pages(
            f"{account_id}/insights",
            {
                "level": "account",
                "fields": "spend,action_values",
                "time_increment": 1,
                "time_range": json.dumps({"since": since.isoformat(), "until": until.isoformat()}),
                "limit": INSIGHTS_PAGE_LIMIT,
            },
            "get_daily_spend",
        )
        daily = []
        for row in rows:
            try:
                day = date.fromisoformat(str(row.get("date_start")))
            except ValueError:
                continue
            daily.append(DailyAdMetric(
                date=day,
                spend=to_decimal(row.get("spend")),
                revenue=to_decimal(_action_value(row.get("action_values"))),
            ))
        return daily

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Swap an OAuth code for a long-lived user token."""
        if not settings.facebook_app_id or not settings.facebook_app_secret:
            raise InvalidInput("Facebook app id/secret are not configured", field="code")
        short = await self._retry_operation(
            lambda: self._request_json("GET", f"{self.base_url}/oauth/access_token", params={
                "client_id": settings.facebook_app_id,
                "client_secret": settings.facebook_app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            }),
            operation_name="exchange_code",
        ) or {}
        if not short.get("access_token"):
            raise AuthFailed("Facebook did not return an access token", provider=self.name)

        long_lived = await self._retry_operation(
            lambda: self._request_json("GET", f"{self.base_url}/oauth/access_token", params={
                "grant_type": "fb_exchange_token",
                "client_id": settings.facebook_app_id,
                "client_secret": settings.facebook_app_secret,
                "fb_exchange_token": short["access_token"],
            }),
            operation_name="extend_token",
        ) or {}
        return long_lived.get("access_token") or short["access_token"]
