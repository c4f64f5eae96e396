"""
Core Application - Infrastructure & Base Classes

Shared building blocks used by the escrow and notifications apps. Nothing in
here knows about escrows, messages or payment providers.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic-locking version counter

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, lost races)
    - ExternalServiceError: Third-party service failures
    - ConfigurationError: Required setting missing

Decorators (import from core.decorators):
    - requires_settings: Refuse to serve a request when a setting is blank

Helpers (import from core.helpers):
    - verify_hmac_signature: Constant-time HMAC-SHA256 check
    - verify_basic_auth: Constant-time HTTP Basic credentials check
    - get_client_ip: Client address behind proxies
"""
