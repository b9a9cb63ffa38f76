from depot.domain.models import AuthorityKey, CertificateRecord, Challenge
from depot.errors import DepotError, NotFoundError
from depot.repository.repositories import CertificateRecordRepository
from shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.DATABASE_POOL_TIMEOUT

# Domain Models (columns used by SQLAlchemy/Alembic)
CertificateRecord.not_valid_before
CertificateRecord.not_valid_after
AuthorityKey.authority_id
AuthorityKey.created_at
Challenge.created_at

# Repository reads used by operators and tests
CertificateRecordRepository.get_by_id

# Error bases caught by embedding services
DepotError
NotFoundError
