"""
Shared building blocks for the domain apps.

- core.models.BaseModel: created_at / updated_at
- core.model_mixins: UUID primary keys and the optimistic-locking version counter
- core.services: BaseService and ServiceResult
- core.exceptions: BaseApplicationError and its HTTP-shaped subclasses
- core.views.health_check: database and cache check
"""
