"""Static entity registry -- the closed set of mirrored Salesforce objects.

Defines:
- EntityType: enum of every supported Salesforce object (api name as value).
- FieldType / FieldMapping / EntityConfig: per-object mapping configuration.
- ENTITY_CONFIGS: the static mapping table for each EntityType.
- EntityRegistry: lookup by api name or destination table, honouring the
  enabled flags (optionally overridden by SALESFORCE_ENABLED_OBJECTS).

Every lookup for a name outside the registry, or for a disabled object,
raises ConfigError.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from src.sfmirror.config import get_settings
from src.sfmirror.core.errors import ConfigError


class EntityType(str, Enum):
    """Supported Salesforce objects, valued by their API name."""

    ACCOUNT = "Account"
    CONTACT = "Contact"
    LEAD = "Lead"
    OPPORTUNITY = "Opportunity"
    TASK = "Task"
    EVENT = "Event"


class FieldType(str, Enum):
    """Destination value type for a mapped field."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ANY = "any"


class FieldMapping(BaseModel):
    """One Salesforce field mapped onto one destination column."""

    model_config = ConfigDict(frozen=True)

    source: str
    dest: str
    type: FieldType = FieldType.STRING
    required: bool = False
    indexed: bool = False
    is_name: bool = False


class EntityConfig(BaseModel):
    """Mapping configuration for one Salesforce object."""

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType
    table_name: str
    label: str
    enabled: bool = True
    fields: tuple[FieldMapping, ...]

    @property
    def api_name(self) -> str:
        return self.entity_type.value


def _f(source: str, dest: str, type: FieldType = FieldType.STRING, **flags: bool) -> FieldMapping:
    return FieldMapping(source=source, dest=dest, type=type, **flags)


N, B, D, DT = (
    FieldType.NUMBER,
    FieldType.BOOLEAN,
    FieldType.DATE,
    FieldType.DATETIME,
)


# ── Field Mappings ──────────────────────────────────────────────────────────

ACCOUNT_FIELDS = (
    _f("Name", "name", required=True, indexed=True, is_name=True),
    _f("Type", "type"),
    _f("ParentId", "parent_id"),
    _f("BillingStreet", "billing_street"),
    _f("BillingCity", "billing_city"),
    _f("BillingState", "billing_state"),
    _f("BillingPostalCode", "billing_postal_code"),
    _f("BillingCountry", "billing_country"),
    _f("ShippingStreet", "shipping_street"),
    _f("ShippingCity", "shipping_city"),
    _f("ShippingState", "shipping_state"),
    _f("ShippingPostalCode", "shipping_postal_code"),
    _f("ShippingCountry", "shipping_country"),
    _f("Phone", "phone"),
    _f("Website", "website"),
    _f("Industry", "industry"),
    _f("AnnualRevenue", "annual_revenue", N),
    _f("NumberOfEmployees", "number_of_employees", N),
    _f("Description", "description"),
    _f("OwnerId", "owner_id", indexed=True),
)

CONTACT_FIELDS = (
    _f("AccountId", "account_id", indexed=True),
    _f("FirstName", "first_name"),
    _f("LastName", "last_name", required=True),
    _f("Name", "name", required=True, is_name=True),
    _f("Salutation", "salutation"),
    _f("Title", "title"),
    _f("MailingStreet", "mailing_street"),
    _f("MailingCity", "mailing_city"),
    _f("MailingState", "mailing_state"),
    _f("MailingPostalCode", "mailing_postal_code"),
    _f("MailingCountry", "mailing_country"),
    _f("OtherStreet", "other_street"),
    _f("OtherCity", "other_city"),
    _f("OtherState", "other_state"),
    _f("OtherPostalCode", "other_postal_code"),
    _f("OtherCountry", "other_country"),
    _f("Phone", "phone", indexed=True),
    _f("MobilePhone", "mobile_phone", indexed=True),
    _f("HomePhone", "home_phone"),
    _f("Email", "email", indexed=True),
    _f("OwnerId", "owner_id", indexed=True),
    _f("ReportsToId", "reports_to_id"),
)

LEAD_FIELDS = (
    _f("FirstName", "first_name"),
    _f("LastName", "last_name", required=True),
    _f("Name", "name", required=True, is_name=True),
    _f("Salutation", "salutation"),
    _f("Title", "title"),
    _f("Company", "company"),
    _f("Street", "street"),
    _f("City", "city"),
    _f("State", "state"),
    _f("PostalCode", "postal_code"),
    _f("Country", "country"),
    _f("Phone", "phone", indexed=True),
    _f("Email", "email", indexed=True),
    _f("Website", "website"),
    _f("Status", "status", indexed=True),
    _f("LeadSource", "lead_source"),
    _f("Industry", "industry"),
    _f("Rating", "rating"),
    _f("AnnualRevenue", "annual_revenue", N),
    _f("NumberOfEmployees", "number_of_employees", N),
    _f("Description", "description"),
    _f("IsConverted", "is_converted", B),
    _f("ConvertedAccountId", "converted_account_id"),
    _f("ConvertedContactId", "converted_contact_id"),
    _f("ConvertedOpportunityId", "converted_opportunity_id"),
    _f("ConvertedDate", "converted_date", D),
    _f("OwnerId", "owner_id", indexed=True),
)

OPPORTUNITY_FIELDS = (
    _f("AccountId", "account_id", indexed=True),
    _f("Name", "name", required=True, is_name=True),
    _f("Description", "description"),
    _f("StageName", "stage_name", required=True, indexed=True),
    _f("Amount", "amount", N),
    _f("Probability", "probability", N),
    _f("CloseDate", "close_date", D, indexed=True),
    _f("Type", "type"),
    _f("LeadSource", "lead_source"),
    _f("NextStep", "next_step"),
    _f("ForecastCategoryName", "forecast_category_name"),
    _f("IsClosed", "is_closed", B),
    _f("IsWon", "is_won", B),
    _f("OwnerId", "owner_id", indexed=True),
)

TASK_FIELDS = (
    _f("WhoId", "who_id", indexed=True),
    _f("WhatId", "what_id", indexed=True),
    _f("Subject", "subject", is_name=True),
    _f("Description", "description"),
    _f("Status", "status", indexed=True),
    _f("Priority", "priority"),
    _f("ActivityDate", "activity_date", D),
    _f("CallType", "call_type"),
    _f("CallDurationInSeconds", "call_duration_in_seconds", N),
    _f("CallDisposition", "call_disposition"),
    _f("IsClosed", "is_completed", B),
    _f("CompletedDateTime", "completed_date_time", DT),
    _f("OwnerId", "owner_id", indexed=True),
)

EVENT_FIELDS = (
    _f("WhoId", "who_id", indexed=True),
    _f("WhatId", "what_id", indexed=True),
    _f("Subject", "subject", is_name=True),
    _f("Description", "description"),
    _f("Location", "location"),
    _f("StartDateTime", "start_date_time", DT, indexed=True),
    _f("EndDateTime", "end_date_time", DT),
    _f("IsAllDayEvent", "is_all_day_event", B),
    _f("DurationInMinutes", "duration_in_minutes", N),
    _f("OwnerId", "owner_id", indexed=True),
)


ENTITY_CONFIGS: dict[EntityType, EntityConfig] = {
    EntityType.ACCOUNT: EntityConfig(
        entity_type=EntityType.ACCOUNT,
        table_name="sf_accounts",
        label="Accounts",
        fields=ACCOUNT_FIELDS,
    ),
    EntityType.CONTACT: EntityConfig(
        entity_type=EntityType.CONTACT,
        table_name="sf_contacts",
        label="Contacts",
        fields=CONTACT_FIELDS,
    ),
    EntityType.LEAD: EntityConfig(
        entity_type=EntityType.LEAD,
        table_name="sf_leads",
        label="Leads",
        fields=LEAD_FIELDS,
    ),
    EntityType.OPPORTUNITY: EntityConfig(
        entity_type=EntityType.OPPORTUNITY,
        table_name="sf_opportunities",
        label="Opportunities",
        fields=OPPORTUNITY_FIELDS,
    ),
    EntityType.TASK: EntityConfig(
        entity_type=EntityType.TASK,
        table_name="sf_tasks",
        label="Tasks",
        enabled=False,
        fields=TASK_FIELDS,
    ),
    EntityType.EVENT: EntityConfig(
        entity_type=EntityType.EVENT,
        table_name="sf_events",
        label="Events",
        enabled=False,
        fields=EVENT_FIELDS,
    ),
}


# Columns every mirror table carries in addition to the mapped fields
RESERVED_COLUMNS = frozenset({
    "id",
    "sf_id",
    "cdc_change_type",
    "cdc_replay_id",
    "is_deleted",
    "synced_at",
    "sf_created_date",
    "sf_last_modified_date",
})


def validate_entity_config(config: EntityConfig) -> None:
    """Check the structural invariants of one entity configuration.

    Raises:
        ConfigError: On duplicate destination names, a destination name that
            collides with a change-tracking column, or no display-name field.
    """
    seen: set[str] = set()
    for mapping in config.fields:
        if mapping.dest in seen:
            raise ConfigError(
                f"{config.api_name}: duplicate destination field '{mapping.dest}'"
            )
        if mapping.dest in RESERVED_COLUMNS:
            raise ConfigError(
                f"{config.api_name}: destination field '{mapping.dest}' is reserved"
            )
        seen.add(mapping.dest)

    if not any(mapping.is_name for mapping in config.fields):
        raise ConfigError(f"{config.api_name}: no field is marked as the display name")


class EntityRegistry:
    """Resolves entity configurations with their effective enabled state.

    Args:
        configs: Entity configurations to serve. Each is validated up front.
        enabled_objects: Optional set of api names that overrides every
            config's static ``enabled`` flag.
    """

    def __init__(
        self,
        configs: Iterable[EntityConfig],
        enabled_objects: set[str] | None = None,
    ) -> None:
        self._configs: dict[str, EntityConfig] = {}
        self._by_table: dict[str, EntityConfig] = {}
        for config in configs:
            validate_entity_config(config)
            self._configs[config.api_name] = config
            self._by_table[config.table_name] = config
        self._enabled_objects = enabled_objects

    def __len__(self) -> int:
        return len(self._configs)

    def is_enabled(self, config: EntityConfig) -> bool:
        if self._enabled_objects is not None:
            return config.api_name in self._enabled_objects
        return config.enabled

    def all(self) -> list[EntityConfig]:
        return list(self._configs.values())

    def enabled(self) -> list[EntityConfig]:
        """Enabled configurations in registry order."""
        return [c for c in self._configs.values() if self.is_enabled(c)]

    def by_api_name(self, api_name: str | None) -> EntityConfig:
        """Resolve an enabled configuration by Salesforce api name.

        Raises:
            ConfigError: If the name is unknown or the object is disabled.
        """
        config = self._configs.get(api_name or "")
        if config is None:
            raise ConfigError(f"Object type not configured: {api_name}")
        if not self.is_enabled(config):
            raise ConfigError(f"Object type disabled: {api_name}")
        return config

    def by_table(self, table_name: str) -> EntityConfig:
        """Resolve an enabled configuration by destination table name.

        Raises:
            ConfigError: If the table is unknown or its object is disabled.
        """
        config = self._by_table.get(table_name)
        if config is None:
            raise ConfigError(f"Unknown table: {table_name}")
        if not self.is_enabled(config):
            raise ConfigError(f"Table disabled: {table_name}")
        return config


@lru_cache
def get_registry() -> EntityRegistry:
    """Singleton registry built from ENTITY_CONFIGS and settings."""
    return EntityRegistry(
        ENTITY_CONFIGS.values(),
        enabled_objects=get_settings().enabled_objects,
    )
