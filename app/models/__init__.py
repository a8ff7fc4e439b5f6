# Guest check-in — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.enums import Phase, OccupancyState         # noqa
from app.models.credential import Credential               # noqa
from app.models.occupancy_event import OccupancyEvent      # noqa
from app.models.evidence_item import EvidenceItem          # noqa
