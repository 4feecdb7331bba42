"""App Registry Models

The registry (collection `apps`) says which apps meter usage with credits
and how many credits a user gets per month. It is maintained outside the
credit service; the service only reads it and seeds the known defaults.
"""

from pydantic import BaseModel
from typing import Optional, Dict, Any


class AppConfig(BaseModel):
    """Registry entry for one app"""
    app_id: str
    app_name: Optional[str] = None
    has_credits: bool = False
    monthly_allotment: int = 0

    # Display only
    credit_unit: Optional[str] = None
    credit_unit_plural: Optional[str] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def from_document(cls, doc: Dict[str, Any], app_id: str = None) -> "AppConfig":
        """Build from a stored entry, accepting the older camelCase names."""
        data = {k: v for k, v in doc.items() if k != "_id"}
        if "hasCredits" in data:
            data.setdefault("has_credits", data["hasCredits"])
        for legacy in ("monthlyAllotment", "monthlyLimit"):
            if legacy in data:
                data.setdefault("monthly_allotment", data[legacy])
        if "appName" in data:
            data.setdefault("app_name", data["appName"])
        if data.get("monthly_allotment") is None:
            data["monthly_allotment"] = 0
        data.setdefault("app_id", app_id)
        return cls.model_validate(data)


# Apps known to use credits. Seeded insert-if-absent on startup.
DEFAULT_APPS = [
    AppConfig(
        app_id="paco",
        app_name="Paco Generator",
        has_credits=True,
        monthly_allotment=50,
        credit_unit="afbeelding",
        credit_unit_plural="afbeeldingen",
    ),
    AppConfig(
        app_id="translate",
        app_name="Vertaler",
        has_credits=True,
        monthly_allotment=1000,
        credit_unit="woord",
        credit_unit_plural="woorden",
    ),
]
