"""Jobs index — title, company name, location and job type."""

from typing import Any

from bazar_search.indexes.base import EntityIndex, SearchField, same_value, timestamp
from bazar_search.orchestrator.schemas import JobRecord, SearchFilters


class JobIndex(EntityIndex[JobRecord]):
    kind = "jobs"
    fields = (
        SearchField("title", 3.0),
        SearchField("company", 1.5),
        SearchField("locationType", 0.5),
        SearchField("jobType", 0.5),
    )

    def field_values(self, record: JobRecord) -> dict[str, str | list[str]]:
        return {
            "title": record.title,
            "company": record.company.name,
            "locationType": record.location_type,
            "jobType": record.job_type,
        }

    def display_fields(self, record: JobRecord) -> dict[str, Any]:
        company = {"name": record.company.name, "profilePicture": record.company.profile_picture}
        return {
            "title": record.title,
            "company": company,
            # older clients read companyDetails[0]
            "companyDetails": [dict(company)],
            "jobType": record.job_type,
            "locationType": record.location_type,
        }

    def tie_break(self, record: JobRecord) -> tuple:
        return (-timestamp(record.posted_at),)

    def completion_values(self, record: JobRecord) -> list[str]:
        return [record.title]

    def matches_filters(self, record: JobRecord, filters: SearchFilters) -> bool:
        if filters.job_type and not same_value(record.job_type, filters.job_type):
            return False
        if filters.location_type and not same_value(record.location_type, filters.location_type):
            return False
        return True
