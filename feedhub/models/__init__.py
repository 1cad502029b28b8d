from feedhub.models.base import Base  # noqa: F401

from feedhub.models.uid_counter import WorkspaceUidCounter  # noqa: F401
from feedhub.models.custom_field import CustomField  # noqa: F401
from feedhub.models.field_mapping import FieldMapping  # noqa: F401
from feedhub.models.mapped_product import MappedProduct  # noqa: F401
from feedhub.models.ingestion_run import IngestionRun  # noqa: F401
from feedhub.models.feed_error import FeedError  # noqa: F401
from feedhub.models.deduplication_rule import DeduplicationRule  # noqa: F401
from feedhub.models.final_product import FinalProduct  # noqa: F401
