"""Error taxonomy shared by the job clients, the stage runner and the store.

Everything deriving from ``EnrichmentError`` is absorbed at the stage boundary
and turned into a degraded stage result. ``LeadStoreError`` subclasses are
not: a missing record or an unreachable store aborts the request.
"""


class EnrichmentError(Exception):
    """Base class for faults that degrade a single stage."""


class ConfigurationFault(EnrichmentError):
    """Bad credentials or a malformed job input. Never retried."""


class SubmissionError(ConfigurationFault):
    """The job provider rejected a submission."""


class TransientProviderFault(EnrichmentError):
    """Network or timeout problem talking to a provider."""


class TransientQueryError(TransientProviderFault):
    """A single status query failed; the poll loop decides what to do."""


class FetchError(EnrichmentError):
    """Results of a finished job could not be read."""


class EmptyResult(EnrichmentError):
    """The job succeeded but produced nothing to extract."""


class SchemaFault(EnrichmentError):
    """An upstream payload did not have the expected shape."""


class LeadStoreError(Exception):
    """Base class for record store failures."""


class RecordNotFound(LeadStoreError):
    """The lead identity does not exist."""

    def __init__(self, lead_id: str):
        super().__init__(f"Lead not found: {lead_id}")
        self.lead_id = lead_id


class StoreError(LeadStoreError):
    """The record store could not be read or written."""
