"""
Core Application - Infrastructure & Base Classes

Generic base classes shared by the domain apps (shipments, settlement).

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)
    - VersionedModel: BaseModel with an optimistic-locking version counter

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - MetadataMixin: Flexible JSON metadata storage

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - PermissionDeniedError: Authorization failures
    - ConflictError: State conflicts (duplicates, stale transitions)
    - ExternalServiceError: Payment gateway / payout rail failures

Views (import from core.views):
    - health_check: Liveness endpoint for load balancers
"""
